"""Install orchestration - document, detection, writes, manifest, telemetry.

One SkillInstaller call is one invocation: the skill document is resolved
and the manifest read before anything is written, agents are re-detected,
the writer reconciles every target agent, and the manifest is committed
once with all record changes.
"""

import logging
import os
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from qaskills.agents import GENERIC_AGENT_ID, get_agent, list_agents, resolve_skills_dir
from qaskills.api_client import RegistryClient
from qaskills.config import Config, get_config
from qaskills.detector import DetectionReport, detect
from qaskills.document import fetch_document, parse_file
from qaskills.errors import (
    ManifestCorruptionError,
    ManifestIOError,
    ManifestNotUpdatedError,
    ParseError,
    QASkillsError,
    UnsupportedAgentError,
    ValidationError,
)
from qaskills.manifest import InstallStateTracker
from qaskills.models import (
    AgentOutcome,
    AgentTarget,
    InstallRecord,
    InstallState,
    SkillDocument,
)
from qaskills.telemetry import TelemetryReporter, make_event
from qaskills.writer import ArtifactWriter, file_hash

logger = logging.getLogger(__name__)

Action = Literal["install", "update", "remove"]


@dataclass
class OperationResult:
    """Per-agent outcomes of one add/update/remove invocation."""

    skill_id: str
    action: Action
    outcomes: list[AgentOutcome]
    excluded: dict[str, str] = field(default_factory=dict)
    document: SkillDocument | None = None

    @property
    def exit_code(self) -> int:
        """1 only if every targeted agent failed or conflicted."""
        if self.outcomes and not any(outcome.ok for outcome in self.outcomes):
            return 1
        return 0

    def tally(self) -> Counter:
        return Counter(outcome.status for outcome in self.outcomes)


@dataclass
class SkillStatus:
    """A manifest record with the live state of its artifact."""

    record: InstallRecord
    state: InstallState


@dataclass
class RepairResult:
    records: list[InstallRecord]
    quarantined: Path | None = None
    skipped: dict[str, str] = field(default_factory=dict)


class SkillInstaller:
    """Installs, updates and removes skills across detected agents."""

    def __init__(
        self,
        project_root: Path | None = None,
        home_dir: Path | None = None,
        *,
        config: Config | None = None,
        tracker: InstallStateTracker | None = None,
        writer: ArtifactWriter | None = None,
        reporter: TelemetryReporter | None = None,
        client: RegistryClient | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        """Initialize the installer.

        Args:
            project_root: Project directory. If None, uses the current directory.
            home_dir: Home directory for global agents. If None, uses Path.home().
            config: Configuration. If None, uses the global config.
            tracker: Manifest tracker. If None, one is created for the project.
            writer: Artifact writer. If None, one is created for the project.
            reporter: Telemetry reporter. If None, one is created from config.
            client: Registry client used to fetch skills by slug.
            environ: Environment used for agent detection (default: os.environ).
        """
        self.config = config or get_config()
        self.project_root = Path(project_root or Path.cwd()).resolve()
        self.home_dir = Path(home_dir).resolve() if home_dir is not None else None
        self.tracker = tracker or InstallStateTracker(
            self.config.get_manifest_path(self.project_root)
        )
        self.writer = writer or ArtifactWriter(
            self.project_root, self.home_dir, self.config.qaskills_max_workers
        )
        self.reporter = reporter or TelemetryReporter(self.config)
        self.client = client
        self.environ = environ if environ is not None else os.environ

    def resolve_document(self, source: str) -> SkillDocument:
        """Resolve a skill from a local path or the registry.

        Args:
            source: Path to a SKILL.md (or a directory containing one),
                otherwise a registry id or slug.

        Raises:
            ParseError: If a local file is malformed.
            ValidationError: If required fields are missing.
            RegistryError: If the skill cannot be fetched.
        """
        path = Path(source).expanduser()
        if path.exists():
            logger.info(f"Loading skill from local path {path}")
            try:
                return parse_file(path)
            except OSError as e:
                raise ParseError(f"Cannot read {path}: {e}") from e

        logger.info(f"Fetching skill '{source}' from registry")
        if self.client is not None:
            return fetch_document(source, self.client)
        with RegistryClient(config=self.config) as client:
            return fetch_document(source, client)

    def detect(self) -> DetectionReport:
        return detect(self.project_root, self.home_dir, self.environ)

    def _select(self, agent_ids: list[str]) -> tuple[list[AgentTarget], list[AgentOutcome]]:
        """Look up agents by id or name; unknown ones become failed outcomes."""
        agents: list[AgentTarget] = []
        rejected: list[AgentOutcome] = []
        for agent_id in agent_ids:
            try:
                agent = get_agent(agent_id)
            except UnsupportedAgentError as e:
                logger.warning(str(e))
                rejected.append(
                    AgentOutcome(agent_id=agent_id, state=InstallState.FAILED, error=e)
                )
                continue
            if agent not in agents:
                agents.append(agent)
        return agents, rejected

    def add(self, source: str, agent_ids: list[str] | None = None) -> OperationResult:
        """Install a skill into the given agents, or into every detected agent.

        With no override and nothing detected, the generic target is used.
        """
        document = self.resolve_document(source)
        records = self.tracker.records_for(document.skill_id)
        report = self.detect()

        if agent_ids:
            agents, rejected = self._select(agent_ids)
        else:
            agents, rejected = list(report.present), []
            if not agents:
                logger.info("No agents detected, falling back to the generic target")
                agents = [get_agent(GENERIC_AGENT_ID)]

        outcomes = self.writer.install(document, agents, records) + rejected
        return self._finish(document.skill_id, "install", outcomes, report, document)

    def update(self, source: str, agent_ids: list[str] | None = None) -> OperationResult:
        """Update a skill in the agents it is recorded for.

        Agents without a record are left alone unless named explicitly, in
        which case absent pairs simply stay absent.
        """
        document = self.resolve_document(source)
        records = self.tracker.records_for(document.skill_id)
        report = self.detect()

        if agent_ids:
            agents, rejected = self._select(agent_ids)
        elif records:
            agents, rejected = self._select(list(records))
        else:
            agents, rejected = list(report.present), []

        outcomes = self.writer.update(document, agents, records) + rejected
        return self._finish(document.skill_id, "update", outcomes, report, document)

    def remove(self, skill_id: str, agent_ids: list[str] | None = None) -> OperationResult:
        """Remove a skill from recorded and detected agents."""
        skill_id = skill_id.strip()
        if not skill_id:
            raise ValidationError("Skill name is required")

        records = self.tracker.records_for(skill_id)
        report = self.detect()

        if agent_ids:
            agents, rejected = self._select(agent_ids)
        else:
            candidates = list(records)
            candidates += [agent_id for agent_id in report.ids if agent_id not in records]
            agents, rejected = self._select(candidates)

        outcomes = self.writer.remove(skill_id, agents, records) + rejected
        return self._finish(skill_id, "remove", outcomes, report)

    def _finish(
        self,
        skill_id: str,
        action: Action,
        outcomes: list[AgentOutcome],
        report: DetectionReport,
        document: SkillDocument | None = None,
    ) -> OperationResult:
        result = OperationResult(
            skill_id=skill_id,
            action=action,
            outcomes=outcomes,
            excluded=dict(report.excluded),
            document=document,
        )
        changes = [
            (skill_id, outcome.agent_id, outcome.record)
            for outcome in outcomes
            if outcome.record_changed
        ]
        if changes:
            try:
                self.tracker.commit(changes)
            except (ManifestIOError, ManifestCorruptionError) as e:
                logger.error(f"Manifest not updated after {action} of {skill_id}: {e}")
                raise ManifestNotUpdatedError(e, result) from e

        if any(outcome.ok for outcome in outcomes):
            agents = [outcome.agent_id for outcome in outcomes if outcome.ok]
            self.reporter.report(make_event(skill_id, action, agents))

        return result

    def status(self) -> list[SkillStatus]:
        """List manifest records with the live state of each artifact."""
        statuses = []
        for record in self.tracker.load():
            try:
                path = self.writer.target_path(get_agent(record.agent_id), record.skill_id)
            except QASkillsError:
                path = Path(record.artifact_path)
            statuses.append(SkillStatus(record=record, state=self.writer.probe(record, path)))
        return statuses

    def repair(self) -> RepairResult:
        """Rebuild the manifest from artifacts found in every agent's skills dir.

        A manifest that fails to load is moved aside first. Records from a
        readable manifest keep their install timestamps.
        """
        quarantined = None
        try:
            previous = {record.key: record for record in self.tracker.load()}
        except ManifestCorruptionError as e:
            logger.warning(str(e))
            quarantined = self.tracker.quarantine()
            previous = {}

        result = RepairResult(records=[], quarantined=quarantined)
        for agent in list_agents():
            skills_dir = resolve_skills_dir(agent, self.project_root, self.home_dir)
            if not skills_dir.is_dir():
                continue
            for path in sorted(skills_dir.glob(agent.artifact_filename.format(name="*"))):
                record = self._record_from_artifact(agent, path, previous, result.skipped)
                if record is not None:
                    result.records.append(record)

        self.tracker.reconcile(result.records)
        logger.info(f"Manifest rebuilt with {len(result.records)} records")
        return result

    def _record_from_artifact(
        self,
        agent: AgentTarget,
        path: Path,
        previous: dict[tuple[str, str], InstallRecord],
        skipped: dict[str, str],
    ) -> InstallRecord | None:
        if not path.is_file():
            return None
        try:
            document = parse_file(path)
            expected = self.writer.target_path(agent, document.skill_id)
        except (QASkillsError, OSError) as e:
            skipped[str(path)] = str(e)
            return None
        if expected != Path(os.path.abspath(path)):
            skipped[str(path)] = f"name '{document.skill_id}' does not match the file location"
            return None

        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        old = previous.get((document.skill_id, agent.id))
        return InstallRecord(
            skill_id=document.skill_id,
            agent_id=agent.id,
            installed_version=document.version,
            artifact_path=str(expected),
            content_hash=file_hash(expected),
            installed_at=old.installed_at if old is not None else modified,
            updated_at=modified,
        )
