"""Configuration management for the QA Skills CLI."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if exists and not in test mode
# This ensures environment variables are available before Config is instantiated
if not os.getenv("TESTING") and Path(".env").exists():
    load_dotenv(".env")

MANIFEST_DIRNAME = ".qaskills"
MANIFEST_FILENAME = "manifest.json"

_FALSY = {"0", "false", "no", "off"}
_TRUTHY = {"1", "true", "yes", "on"}


class Config(BaseSettings):
    """CLI configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    # Registry API
    qaskills_api_url: str = Field(
        default="https://qaskills.sh",
        description="Base URL of the skill registry API",
    )
    qaskills_request_timeout: float = Field(
        default=10.0,
        description="Timeout in seconds for registry requests",
        gt=0,
    )

    # Telemetry opt-outs (opt-out, enabled by default)
    qaskills_telemetry: str | None = Field(
        default=None,
        description="Set to 0 to disable anonymous install telemetry",
    )
    do_not_track: str | None = Field(
        default=None,
        description="Cross-tool opt-out; set to 1 to disable telemetry",
    )
    qaskills_telemetry_timeout: float = Field(
        default=2.0,
        description="Hard timeout in seconds for a telemetry request",
        gt=0,
    )

    # Install state
    qaskills_manifest_path: Path | None = Field(
        default=None,
        description="Install manifest location (default: <project>/.qaskills/manifest.json)",
    )
    qaskills_max_workers: int = Field(
        default=4,
        description="Maximum number of agents written concurrently",
        ge=1,
        le=32,
    )

    # Logging configuration
    log_level: str = Field(
        default="WARNING",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )

    @property
    def telemetry_enabled(self) -> bool:
        """Whether telemetry may be sent.

        Returns:
            False if either opt-out environment variable is set.
        """
        if (
            self.qaskills_telemetry is not None
            and self.qaskills_telemetry.strip().lower() in _FALSY
        ):
            return False
        if (
            self.do_not_track is not None
            and self.do_not_track.strip().lower() in _TRUTHY
        ):
            return False
        return True

    def get_api_url(self) -> str:
        """Return the registry base URL without a trailing slash."""
        return self.qaskills_api_url.rstrip("/")

    def get_manifest_path(self, project_root: Path) -> Path:
        """Get the manifest path for a project.

        Args:
            project_root: Root directory of the current project.

        Returns:
            Configured manifest path, or the per-project default.
        """
        if self.qaskills_manifest_path:
            return Path(self.qaskills_manifest_path).expanduser().resolve()
        return Path(project_root).resolve() / MANIFEST_DIRNAME / MANIFEST_FILENAME


# Global configuration instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance (singleton pattern)."""
    global _config
    if _config is None:
        _config = Config()
    return _config
