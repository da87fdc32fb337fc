"""Exception hierarchy for the skill installer.

Errors that invalidate the desired state (ValidationError, ManifestIOError,
ManifestCorruptionError, RegistryError) abort an invocation before any
write. Everything else is raised per agent and collected into outcomes.
"""

from pathlib import Path


class QASkillsError(Exception):
    """Base class for all installer errors."""


class ValidationError(QASkillsError, ValueError):
    """Skill fields are missing or malformed."""


class ParseError(QASkillsError, ValueError):
    """A SKILL.md document could not be parsed."""


class UnsupportedAgentError(QASkillsError, LookupError):
    """An agent id is not present in the registry."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Unsupported agent: {agent_id}")


class DetectionError(QASkillsError):
    """An agent's detection rule raised while probing the filesystem."""

    def __init__(self, agent_id: str, cause: Exception):
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"Detection failed for {agent_id}: {cause}")


class ConflictError(QASkillsError):
    """An artifact on disk was not written by us or was modified since."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{reason}: {path}")


class ArtifactIOError(QASkillsError, OSError):
    """Filesystem failure while writing or removing an artifact."""


class PathTraversalError(ArtifactIOError):
    """A resolved artifact path escapes its intended root."""


class ManifestCorruptionError(QASkillsError):
    """The install manifest exists but cannot be trusted."""

    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(
            f"Install manifest {path} is corrupt ({reason}). "
            "Run 'qaskills repair' to rebuild it from installed artifacts."
        )


class RegistryError(QASkillsError):
    """The remote skill registry could not be reached or returned an error."""


class ManifestIOError(QASkillsError):
    """The install manifest could not be read or written."""

    def __init__(self, path: Path, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"Cannot access install manifest {path}: {cause}")


class ManifestNotUpdatedError(QASkillsError):
    """Artifacts were changed but the manifest commit failed.

    ``result`` carries the per-agent outcomes of the invocation so they can
    still be reported.
    """

    def __init__(self, cause: QASkillsError, result):
        self.cause = cause
        self.result = result
        super().__init__(
            f"{cause}. Artifacts were changed but not recorded; "
            "run 'qaskills repair' to record them."
        )
