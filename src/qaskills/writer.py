"""Artifact writer - reconcile skill artifacts on disk, one agent at a time.

Every (skill, agent) pair is handled in isolation: a failure or conflict in
one agent never stops the others. Files whose bytes differ from what we
recorded are never overwritten or deleted.
"""

import hashlib
import logging
import os
import tempfile
from collections.abc import Callable, Iterator, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from qaskills.agents import resolve_skills_dir, resolve_target_path
from qaskills.document import serialize
from qaskills.errors import ConflictError, QASkillsError
from qaskills.models import (
    AgentOutcome,
    AgentTarget,
    InstallRecord,
    InstallState,
    SkillDocument,
    WriteAction,
)

logger = logging.getLogger(__name__)

NOT_OURS = "Artifact exists but was not installed by qaskills"
MODIFIED = "Artifact was modified since it was installed"


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def file_hash(path: Path) -> str | None:
    """sha256 of a file's bytes, or None if it does not exist."""
    try:
        return content_hash(Path(path).read_bytes())
    except FileNotFoundError:
        return None


def _now() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def created_directories(path: Path) -> Iterator[None]:
    """Create a directory and its missing parents for the duration of a block.

    If the block (or the creation itself) fails, the directories created
    here are removed again, deepest first.
    """
    missing: list[Path] = []
    current = Path(path)
    while not current.exists() and current.parent != current:
        missing.append(current)
        current = current.parent

    try:
        Path(path).mkdir(parents=True, exist_ok=True)
        yield
    except BaseException:
        for directory in missing:
            try:
                directory.rmdir()
            except FileNotFoundError:
                continue
            except OSError:
                break
        raise


def write_atomic(path: Path, data: bytes) -> None:
    """Write bytes via a temp file in the same directory and rename it into place."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


class ArtifactWriter:
    """Performs the minimal filesystem operations to reach a desired state."""

    def __init__(
        self,
        project_root: Path,
        home_dir: Path | None = None,
        max_workers: int = 4,
    ):
        """Initialize the writer.

        Args:
            project_root: Root for project-scoped agents.
            home_dir: Root for global agents (default: Path.home()).
            max_workers: Maximum number of agents processed concurrently.
        """
        self.project_root = Path(project_root).resolve()
        self.home_dir = Path(home_dir).resolve() if home_dir is not None else None
        self.max_workers = max(1, max_workers)

    def target_path(self, agent: AgentTarget, skill_id: str) -> Path:
        return resolve_target_path(agent, self.project_root, skill_id, self.home_dir)

    def probe(
        self,
        record: InstallRecord | None,
        path: Path,
        desired_hash: str | None = None,
        desired_version: str | None = None,
    ) -> InstallState:
        """Classify the live state of one pair without touching it."""
        actual = file_hash(path)
        if record is None:
            return InstallState.ABSENT if actual is None else InstallState.CONFLICTED
        if actual is None:
            return InstallState.ABSENT
        if actual != record.content_hash:
            return InstallState.CONFLICTED
        if desired_version is not None and record.installed_version != desired_version:
            return InstallState.STALE
        if desired_hash is not None and actual != desired_hash:
            return InstallState.STALE
        return InstallState.INSTALLED

    def install(
        self,
        document: SkillDocument,
        agents: Sequence[AgentTarget],
        records: Mapping[str, InstallRecord],
    ) -> list[AgentOutcome]:
        """Install or bring up to date a skill in each agent."""
        return self._fan_out(
            agents,
            lambda agent: self._write_one(document, agent, records.get(agent.id), True),
        )

    def update(
        self,
        document: SkillDocument,
        agents: Sequence[AgentTarget],
        records: Mapping[str, InstallRecord],
    ) -> list[AgentOutcome]:
        """Update a skill where it is installed; absent pairs are left absent."""
        return self._fan_out(
            agents,
            lambda agent: self._write_one(document, agent, records.get(agent.id), False),
        )

    def remove(
        self,
        skill_id: str,
        agents: Sequence[AgentTarget],
        records: Mapping[str, InstallRecord],
    ) -> list[AgentOutcome]:
        """Remove a skill's artifact from each agent."""
        return self._fan_out(
            agents,
            lambda agent: self._remove_one(skill_id, agent, records.get(agent.id)),
        )

    def _fan_out(
        self,
        agents: Sequence[AgentTarget],
        handler: Callable[[AgentTarget], AgentOutcome],
    ) -> list[AgentOutcome]:
        if not agents:
            return []

        def guarded(agent: AgentTarget) -> AgentOutcome:
            try:
                return handler(agent)
            except (QASkillsError, OSError) as e:
                logger.warning(f"{agent.id}: {e}")
                return AgentOutcome(agent_id=agent.id, state=InstallState.FAILED, error=e)

        workers = min(self.max_workers, len(agents))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="qaskills-writer") as pool:
            return list(pool.map(guarded, agents))

    def _conflict(
        self,
        agent: AgentTarget,
        path: Path,
        reason: str,
        record: InstallRecord | None,
    ) -> AgentOutcome:
        logger.warning(f"{agent.id}: {reason}: {path}")
        return AgentOutcome(
            agent_id=agent.id,
            state=InstallState.CONFLICTED,
            artifact_path=path,
            error=ConflictError(path, reason),
            record=record,
        )

    def _write(self, path: Path, data: bytes) -> None:
        with created_directories(path.parent):
            write_atomic(path, data)

    def _write_one(
        self,
        document: SkillDocument,
        agent: AgentTarget,
        record: InstallRecord | None,
        create_missing: bool,
    ) -> AgentOutcome:
        path = self.target_path(agent, document.skill_id)
        data = serialize(document).encode("utf-8")
        desired = content_hash(data)
        actual = file_hash(path)
        now = _now()

        def fresh_record() -> InstallRecord:
            return InstallRecord(
                skill_id=document.skill_id,
                agent_id=agent.id,
                installed_version=document.version,
                artifact_path=str(path),
                content_hash=desired,
                installed_at=record.installed_at if record is not None else now,
                updated_at=now,
            )

        def outcome(action: WriteAction, new_record: InstallRecord | None) -> AgentOutcome:
            return AgentOutcome(
                agent_id=agent.id,
                state=InstallState.INSTALLED,
                action=action,
                artifact_path=path,
                record=new_record,
                record_changed=new_record is not record,
            )

        if record is None:
            if actual is None:
                if not create_missing:
                    return AgentOutcome(
                        agent_id=agent.id, state=InstallState.ABSENT, artifact_path=path
                    )
                self._write(path, data)
                logger.info(f"{agent.id}: installed {document.skill_id} -> {path}")
                return outcome(WriteAction.CREATED, fresh_record())
            if actual == desired:
                # Left behind by an interrupted run with identical bytes
                return outcome(WriteAction.UNCHANGED, fresh_record())
            return self._conflict(agent, path, NOT_OURS, record=None)

        if actual is None:
            self._write(path, data)
            logger.info(f"{agent.id}: re-created missing artifact {path}")
            return outcome(WriteAction.CREATED, fresh_record())

        if actual != record.content_hash:
            if actual == desired:
                return outcome(WriteAction.UNCHANGED, fresh_record())
            return self._conflict(agent, path, MODIFIED, record=record)

        if actual == desired and record.installed_version == document.version:
            return outcome(WriteAction.UNCHANGED, record)

        self._write(path, data)
        logger.info(
            f"{agent.id}: updated {document.skill_id} "
            f"{record.installed_version} -> {document.version}"
        )
        return outcome(WriteAction.UPDATED, fresh_record())

    def _remove_one(
        self,
        skill_id: str,
        agent: AgentTarget,
        record: InstallRecord | None,
    ) -> AgentOutcome:
        path = self.target_path(agent, skill_id)
        actual = file_hash(path)

        if record is None:
            if actual is None:
                return AgentOutcome(
                    agent_id=agent.id, state=InstallState.ABSENT, artifact_path=path
                )
            return self._conflict(agent, path, NOT_OURS, record=None)

        if actual is not None:
            if actual != record.content_hash:
                return self._conflict(agent, path, MODIFIED, record=record)
            path.unlink(missing_ok=True)
            self._prune_empty_dirs(
                path.parent, resolve_skills_dir(agent, self.project_root, self.home_dir)
            )
            logger.info(f"{agent.id}: removed {skill_id} ({path})")

        return AgentOutcome(
            agent_id=agent.id,
            state=InstallState.ABSENT,
            action=WriteAction.REMOVED,
            artifact_path=path,
            record=None,
            record_changed=True,
        )

    @staticmethod
    def _prune_empty_dirs(start: Path, stop: Path) -> None:
        # Only directories below the agent's skills dir, e.g. <skills>/<name>/
        current = start
        while current != stop and current.is_relative_to(stop):
            try:
                current.rmdir()
            except OSError:
                break
            current = current.parent
