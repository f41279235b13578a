"""Command-line client for the Bountu package engine."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from bountu.config import Settings
from bountu.exceptions import BountuError
from bountu.main import build_package_manager, configure_logging
from bountu.models.package import Category, PackageFilter, Platform
from bountu.schemas.metadata import RawMetadata

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bountu.models.install import InstallStage
    from bountu.models.package import PackageDescriptor
    from bountu.services.package_service import PackageManager


def _format_size(size_bytes: int) -> str:
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size_bytes} B"


def _status_flag(descriptor: PackageDescriptor) -> str:
    if descriptor.is_installed and descriptor.needs_maintenance:
        return "!"
    if descriptor.is_installed and descriptor.needs_update:
        return "U"
    if descriptor.is_installed:
        return "I"
    if not descriptor.installable:
        return "x"
    return " "


def _print_packages(descriptors: Sequence[PackageDescriptor]) -> None:
    if not descriptors:
        print("No packages found.")
        return
    for d in descriptors:
        print(f"  [{_status_flag(d)}] {d.id:<20} {d.version:<14} {d.category.value:<20} {d.name}")
    print(f"{len(descriptors)} package(s)")


def _print_descriptor(d: PackageDescriptor) -> None:
    print(f"{d.name} ({d.id}) {d.version}")
    print(f"  {d.description}")
    print(f"  Category:     {d.category.value}")
    print(f"  Size:         {_format_size(d.size_bytes)}")
    print(f"  Platform:     {d.platform}  Architecture: {d.architecture or 'any'}")
    if d.dependencies:
        print(f"  Depends on:   {', '.join(d.dependencies)}")
    if d.conflicts:
        print(f"  Conflicts:    {', '.join(d.conflicts)}")
    if d.homepage:
        print(f"  Homepage:     {d.homepage}")
    if d.installable:
        print("  Installable:  yes")
    else:
        print(f"  Installable:  no ({d.unavailable_reason})")
    if d.is_installed:
        print(f"  Installed:    {d.installed_version}")
        if d.needs_update:
            print(f"  Update:       {d.installed_version} -> {d.version}")
        if d.needs_maintenance:
            print(f"  Maintenance:  {d.maintenance_reason}")


def _print_stage(stage: InstallStage) -> None:
    print(f"  ... {stage.value.replace('_', ' ')}")


def _filter_from_args(args: argparse.Namespace) -> PackageFilter:
    return PackageFilter(
        query=getattr(args, "query", "") or "",
        category=Category(args.category) if args.category else None,
        platform=Platform(args.platform) if args.platform else None,
        installed_only=args.installed,
        updates_only=args.updates,
        maintenance_only=args.maintenance,
    )


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--category", choices=[c.value for c in Category])
    parser.add_argument("--platform", choices=[p.value for p in Platform])
    parser.add_argument("--installed", action="store_true", help="Only installed packages")
    parser.add_argument("--updates", action="store_true", help="Only packages with updates")
    parser.add_argument(
        "--maintenance", action="store_true", help="Only packages needing maintenance"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bountu-pkg",
        description="Sync the Bountu package repository and manage installed packages",
    )
    parser.add_argument("--data-dir", help="Local state directory (default: $BOUNTU_DATA_DIR)")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("sync", help="Check connectivity and re-clone the repository")
    subparsers.add_parser("refresh", help="Fetch repository changes into the existing mirror")

    list_parser = subparsers.add_parser("list", help="List packages")
    _add_filter_arguments(list_parser)

    search_parser = subparsers.add_parser("search", help="Search packages")
    search_parser.add_argument("query")
    _add_filter_arguments(search_parser)

    show_parser = subparsers.add_parser("show", help="Show package details")
    show_parser.add_argument("package_id")

    install_parser = subparsers.add_parser("install", help="Install a package")
    install_parser.add_argument("package_id")

    uninstall_parser = subparsers.add_parser("uninstall", help="Uninstall a package")
    uninstall_parser.add_argument("package_id")

    update_parser = subparsers.add_parser("update", help="Update installed packages")
    update_parser.add_argument("package_id", nargs="?")
    update_parser.add_argument("--all", action="store_true", help="Update every package")
    update_parser.add_argument(
        "--fix", action="store_true", help="Reinstall a package flagged for maintenance"
    )

    subparsers.add_parser("info", help="Show repository and installation status")

    create_parser = subparsers.add_parser(
        "create-package", help="Add package metadata to the local repository"
    )
    create_parser.add_argument("--id", required=True, dest="package_id")
    create_parser.add_argument("--name", required=True)
    create_parser.add_argument("--version", required=True)
    create_parser.add_argument("--description", required=True)
    create_parser.add_argument("--category", default=Category.UTILITIES.value)
    create_parser.add_argument("--size", type=int, default=0)
    create_parser.add_argument("--download-url", default="")
    create_parser.add_argument("--checksum", default="")
    create_parser.add_argument("--platform", default="")
    create_parser.add_argument("--architecture", default="")
    create_parser.add_argument("--depends", action="append", default=[])
    return parser


def _run(manager: PackageManager, args: argparse.Namespace) -> int:
    if args.command == "sync":
        result = manager.sync()
        if not result.success:
            print(f"Sync failed after {result.attempts} attempt(s): {result.error}")
            return 1
        print(f"Synced {result.package_count} packages in {result.attempts} attempt(s)")
        return 0

    if args.command == "refresh":
        outcome = manager.refresh()
        print(f"{outcome.message} ({outcome.after_commit[:8]})")
        return 0

    manager.load()

    if args.command in ("list", "search"):
        _print_packages(manager.search(_filter_from_args(args)))
    elif args.command == "show":
        _print_descriptor(manager.get(args.package_id))
    elif args.command == "install":
        print(f"Installing {args.package_id}")
        outcome = manager.install(args.package_id, on_stage=_print_stage)
        print(f"Installed {outcome.package_id} {outcome.version} into {outcome.install_dir}")
        for wrapper in outcome.wrappers:
            print(f"  + {wrapper}")
    elif args.command == "uninstall":
        manager.uninstall(args.package_id)
        print(f"Uninstalled {args.package_id}")
    elif args.command == "update":
        return _run_update(manager, args)
    elif args.command == "info":
        _print_info(manager)
    elif args.command == "create-package":
        return _run_create_package(manager, args)
    return 0


def _run_update(manager: PackageManager, args: argparse.Namespace) -> int:
    if args.all:
        results = manager.update_all()
        if not results:
            print("All packages are up to date.")
            return 0
        failed = 0
        for package_id, result in sorted(results.items()):
            if isinstance(result, BountuError):
                failed += 1
                print(f"  ! {package_id}: {result}")
            else:
                print(f"  + {package_id} {result.version}")
        return 1 if failed else 0
    if not args.package_id:
        print("Error: package id or --all required")
        return 1
    if args.fix:
        outcome = manager.fix_maintenance(args.package_id)
    else:
        outcome = manager.update(args.package_id, on_stage=_print_stage)
    print(f"Updated {outcome.package_id} to {outcome.version}")
    return 0


def _print_info(manager: PackageManager) -> None:
    state = manager.coordinator.mirror.info()
    print("Repository:")
    print(f"  Remote:  {state.remote_url}")
    print(f"  Local:   {state.local_path}")
    print(f"  Commit:  {state.current_commit_hash or '(not synced)'}")
    maintenance = manager.maintenance_status()
    if maintenance.enabled:
        print(f"Maintenance: {maintenance.title}: {maintenance.message}")
        print(f"  Estimated time: {maintenance.estimated_time}")
    app_config = manager.app_config()
    print(f"Latest app version: {app_config.latest_version} (min {app_config.min_version})")
    stats = manager.stats()
    print("Packages:")
    print(f"  Available:   {stats.total}")
    print(f"  Installed:   {stats.installed} ({_format_size(stats.installed_size_bytes)})")
    print(f"  Updates:     {stats.updates}")
    print(f"  Maintenance: {stats.maintenance}")


def _run_create_package(manager: PackageManager, args: argparse.Namespace) -> int:
    try:
        raw = RawMetadata(
            id=args.package_id,
            name=args.name,
            version=args.version,
            description=args.description,
            category=args.category,
            size=args.size,
            dependencies=args.depends,
            download_url=args.download_url,
            checksum_sha256=args.checksum,
            platform=args.platform,
            architecture=args.architecture,
        )
    except ValidationError as exc:
        print(f"Error: invalid package metadata: {exc}")
        return 1
    commit = manager.create_package(raw)
    if commit is None:
        print(f"Package {raw.id} unchanged")
    else:
        print(f"Created package {raw.id} (commit {commit[:8]})")
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    overrides = {"data_dir": Path(args.data_dir)} if args.data_dir else {}
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        print(f"Error: invalid configuration: {exc}")
        sys.exit(1)
    configure_logging(args.debug or settings.debug)

    try:
        with build_package_manager(settings) as manager:
            code = _run(manager, args)
    except BountuError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
