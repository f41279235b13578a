"""Schemas for JSON documents read from the metadata repository."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from bountu.services.version_service import compare_versions

PACKAGE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._+-]*$"

_REPO_DOCUMENT = ConfigDict(extra="ignore", populate_by_name=True)


class RawMetadata(BaseModel):
    """``packages/<id>/metadata.json`` as published upstream."""

    model_config = _REPO_DOCUMENT

    id: str = Field(min_length=1, pattern=PACKAGE_ID_PATTERN)
    name: str
    version: str
    description: str
    category: str
    size: int = Field(ge=0)
    dependencies: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    download_url: str = Field(default="", alias="downloadUrl")
    checksum_sha256: str = Field(default="", alias="checksumSha256")
    platform: str = ""
    architecture: str = ""
    tags: list[str] = Field(default_factory=list)
    install_script: str = Field(default="", alias="installScript")
    uninstall_script: str = Field(default="", alias="uninstallScript")
    homepage: str = ""
    license: str = ""
    maintainer: str = ""


class MaintenanceStatus(BaseModel):
    """``config/maintenance.json``."""

    model_config = _REPO_DOCUMENT

    enabled: bool = Field(default=False, validation_alias=AliasChoices("isEnabled", "enabled"))
    title: str = "Maintenance Mode"
    message: str = "The app is currently under maintenance. Please try again later."
    estimated_time: str = Field(
        default="Unknown", validation_alias=AliasChoices("estimatedTime", "estimated_time")
    )
    allowed_versions: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("allowedVersions", "allowed_versions"),
    )

    def blocks(self, app_version: str) -> bool:
        """Return True when maintenance is on and ``app_version`` is not exempt."""
        return self.enabled and app_version not in self.allowed_versions


class AppConfig(BaseModel):
    """``config/app_config.json``."""

    model_config = _REPO_DOCUMENT

    min_version: str = Field(
        default="1.0", validation_alias=AliasChoices("minVersion", "min_version")
    )
    latest_version: str = Field(
        default="1.0", validation_alias=AliasChoices("latestVersion", "latest_version")
    )
    force_update: bool = Field(
        default=False, validation_alias=AliasChoices("forceUpdate", "force_update")
    )
    message: str = Field(
        default="A new version is available. Please update.",
        validation_alias=AliasChoices("updateMessage", "message"),
    )
    enabled_features: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("enabledFeatures", "enabled_features"),
    )

    def requires_update(self, app_version: str) -> bool:
        """Below the minimum always requires an update; below latest only when forced."""
        if compare_versions(app_version, self.min_version) < 0:
            return True
        return self.force_update and compare_versions(app_version, self.latest_version) < 0
