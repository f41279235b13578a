"""Installation state machine vocabulary."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path


class InstallStage(StrEnum):
    """States of a single package install.

    Idle -> Downloading -> Verifying -> Extracting -> SettingPermissions
    -> RunningPostInstall -> CreatingLinks -> Registered; Failed is reachable
    from every non-terminal state. Removing covers the uninstall path.
    """

    IDLE = "idle"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    SETTING_PERMISSIONS = "setting_permissions"
    RUNNING_POST_INSTALL = "running_post_install"
    CREATING_LINKS = "creating_links"
    REGISTERED = "registered"
    REMOVING = "removing"
    FAILED = "failed"


# Progress span (start, end) of each install stage.
STAGE_WEIGHTS: dict[InstallStage, tuple[float, float]] = {
    InstallStage.DOWNLOADING: (0.0, 0.4),
    InstallStage.VERIFYING: (0.4, 0.5),
    InstallStage.EXTRACTING: (0.5, 0.8),
    InstallStage.SETTING_PERMISSIONS: (0.8, 0.9),
    InstallStage.RUNNING_POST_INSTALL: (0.9, 0.95),
    InstallStage.CREATING_LINKS: (0.95, 1.0),
}


@dataclass
class InstallOutcome:
    """What a successful install or update left on disk."""

    package_id: str
    version: str
    install_dir: Path
    source_url: str
    wrappers: list[Path] = field(default_factory=list)
    script_exit_code: int | None = None
