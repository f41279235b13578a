"""Engine configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_REPO_URL = "https://github.com/snmrdatobgstudioz9918-creator/bountu-packages-global.git"

DEFAULT_MIRROR_BASE_URLS = [
    "https://packages-cf.termux.dev/apt/termux-main",
    "https://grimler.se/termux-packages-24",
]


def _default_shell() -> str:
    """Android ships its shell outside /bin."""
    android_shell = Path("/system/bin/sh")
    if android_shell.exists():
        return str(android_shell)
    return "/bin/sh"


class Settings(BaseSettings):
    """Bountu engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="BOUNTU_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Local state
    data_dir: Path = Path("./data")

    # Metadata repository
    repo_url: str = DEFAULT_REPO_URL
    repo_branch: str = "main"

    # Downloads
    http_timeout_seconds: float = Field(default=30.0, gt=0)
    download_chunk_size: int = Field(default=8192, ge=512)
    max_redirects: int = Field(default=5, ge=0, le=20)
    user_agent: str = "Bountu/1.0"
    mirror_base_urls: list[str] = Field(default_factory=lambda: list(DEFAULT_MIRROR_BASE_URLS))
    allow_missing_checksum: bool = True

    # Sync gate
    sync_max_attempts: int = Field(default=3, ge=1)
    sync_retry_delay_seconds: float = Field(default=2.0, ge=0)
    force_refresh_on_sync: bool = True

    # Connectivity probe
    probe_host: str = "8.8.8.8"
    probe_port: int = Field(default=53, ge=1, le=65535)
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    remote_probe_url: str = "https://github.com"

    # Package hooks
    script_timeout_seconds: float = Field(default=300.0, gt=0)
    shell: str = Field(default_factory=_default_shell)

    # Runtime target overrides (detected when unset)
    target_platform: str | None = None
    target_architecture: str | None = None

    @property
    def repo_dir(self) -> Path:
        return self.data_dir / "repo"

    @property
    def packages_dir(self) -> Path:
        return self.data_dir / "packages"

    @property
    def bin_dir(self) -> Path:
        return self.data_dir / "bin"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @property
    def environment_file(self) -> Path:
        return self.data_dir / "environment.sh"

    @property
    def installed_state_file(self) -> Path:
        return self.data_dir / "installed_packages.json"

    @property
    def mirror_state_file(self) -> Path:
        return self.data_dir / "mirror_state.json"
