"""Data models for skills, agents and install state."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Array-valued frontmatter fields, in serialization order
ARRAY_FIELDS = (
    "tags",
    "testing_types",
    "frameworks",
    "languages",
    "domains",
    "agents",
)


def to_string_list(value: Any) -> list[str]:
    """Normalize a list or comma-separated string into unique strings."""
    if value is None:
        return []
    if isinstance(value, str):
        items = [part.strip() for part in value.split(",")]
    elif isinstance(value, (list, tuple, set, frozenset)):
        items = [str(item).strip() for item in value if item is not None]
    else:
        items = [str(value).strip()]

    seen: set[str] = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


class SkillDocument(BaseModel):
    """Canonical representation of one skill (frontmatter + body)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Skill name (unique per author)")
    description: str = Field(..., min_length=1, description="Short description")
    version: str = Field(default="1.0.0", description="Semantic version")
    author: str = Field(default="", description="Author handle")
    license: str = Field(default="MIT", description="License identifier")
    tags: list[str] = Field(default_factory=list)
    testing_types: list[str] = Field(default_factory=list, alias="testingTypes")
    frameworks: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    domains: list[str] = Field(default_factory=list)
    agents: list[str] = Field(default_factory=list)
    github_url: str | None = Field(default=None, alias="githubUrl")
    body: str = Field(default="", description="Markdown instructions")
    extra: dict[str, Any] = Field(
        default_factory=dict, description="Unknown frontmatter keys, preserved"
    )

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip_required(cls, value: Any) -> Any:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("version", "author", "license", mode="before")
    @classmethod
    def _coerce_scalar(cls, value: Any) -> Any:
        # YAML may load "1.0" as a float or an author handle as an int
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator(*ARRAY_FIELDS, mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        return to_string_list(value)

    @property
    def skill_id(self) -> str:
        """Identifier used for manifest records and artifact filenames."""
        return self.name


class DetectionRule(BaseModel):
    """Presence predicate for an agent.

    The rule matches when any sentinel path exists or any environment
    marker is set. Paths starting with "~" are relative to the home
    directory, all others to the project root.
    """

    model_config = ConfigDict(frozen=True)

    paths: tuple[str, ...] = ()
    env: tuple[str, ...] = ()


class AgentTarget(BaseModel):
    """One supported AI coding agent and its on-disk convention."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$")
    display_name: str
    config_dir: str = Field(..., description="Agent config dir ('~/' = global)")
    skills_dir: str = Field(..., description="Directory receiving skill artifacts")
    artifact_filename: str = Field(
        ..., description="Artifact path pattern relative to skills_dir, uses {name}"
    )
    detection: DetectionRule = Field(default_factory=DetectionRule)
    website: str = ""

    @property
    def scope(self) -> Literal["global", "project"]:
        """'global' when the agent lives in the home directory."""
        return "global" if self.config_dir.startswith("~") else "project"


class InstallRecord(BaseModel):
    """One (skill, agent) installation fact stored in the manifest."""

    skill_id: str
    agent_id: str
    installed_version: str
    artifact_path: str = Field(..., description="Absolute artifact path")
    content_hash: str = Field(..., description="sha256 of the bytes written")
    installed_at: datetime
    updated_at: datetime

    @property
    def key(self) -> tuple[str, str]:
        return (self.skill_id, self.agent_id)


class TelemetryEvent(BaseModel):
    """Anonymous usage event, never persisted."""

    model_config = ConfigDict(populate_by_name=True)

    skill_id: str = Field(..., alias="skillId")
    action: Literal["install", "remove", "update"]
    agents: list[str] = Field(default_factory=list)
    cli_version: str = Field(..., alias="cliVersion")


class InstallState(str, Enum):
    """State of a (skill, agent) pair."""

    ABSENT = "absent"
    INSTALLED = "installed"
    STALE = "stale"
    CONFLICTED = "conflicted"
    FAILED = "failed"


class WriteAction(str, Enum):
    """What the writer did to reach the terminal state."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    NONE = "none"


@dataclass
class AgentOutcome:
    """Terminal result for one agent within one invocation."""

    agent_id: str
    state: InstallState
    action: WriteAction = WriteAction.NONE
    artifact_path: Path | None = None
    error: Exception | None = None
    # Record that should be in the manifest afterwards (None = no record)
    record: InstallRecord | None = None
    record_changed: bool = False

    @property
    def status(self) -> str:
        if self.action is WriteAction.UPDATED:
            return "updated"
        return self.state.value

    @property
    def ok(self) -> bool:
        return self.state not in (InstallState.FAILED, InstallState.CONFLICTED)
