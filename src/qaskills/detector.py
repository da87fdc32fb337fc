"""Detect which registered agents are present on this machine/project.

An agent counts as present when its detection rule matches and its skills
dir can be written, either because it exists writable or because its
nearest existing ancestor is a writable directory. Matched agents that fail
the write check are excluded with a reason instead of being targeted.
"""

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from qaskills.agents import expand_template, list_agents
from qaskills.errors import DetectionError
from qaskills.models import AgentTarget, DetectionRule

logger = logging.getLogger(__name__)


@dataclass
class DetectionReport:
    """Result of one detection pass."""

    present: list[AgentTarget] = field(default_factory=list)
    # agent id -> reason: its rule failed or its skills dir is not writable
    excluded: dict[str, str] = field(default_factory=dict)

    @property
    def ids(self) -> list[str]:
        return [agent.id for agent in self.present]


def evaluate_rule(
    rule: DetectionRule,
    project_root: Path,
    home_dir: Path | None,
    environ: Mapping[str, str],
) -> bool:
    """Check whether a detection rule matches.

    Args:
        rule: Sentinel paths and environment markers.
        project_root: Root for project-relative sentinel paths.
        home_dir: Root for "~" sentinel paths.
        environ: Environment to read markers from.

    Returns:
        True if any sentinel path exists or any marker is set.
    """
    for name in rule.env:
        if environ.get(name):
            return True
    for template in rule.paths:
        if expand_template(template, project_root, home_dir).exists():
            return True
    return False


def unwritable_reason(
    agent: AgentTarget, project_root: Path, home_dir: Path | None
) -> str | None:
    """Explain why the agent's skills dir cannot be written, or None if it can."""
    current = expand_template(agent.skills_dir, project_root, home_dir)
    while not current.exists() and current.parent != current:
        current = current.parent
    if not current.is_dir():
        return f"{current} is not a directory"
    if not os.access(current, os.W_OK | os.X_OK):
        return f"{current} is not writable"
    return None


def detect(
    project_root: Path | None = None,
    home_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
    agents: Iterable[AgentTarget] | None = None,
) -> DetectionReport:
    """Detect present agents.

    Never writes to disk and never raises for a single agent: a rule that
    errors, or a matched agent whose skills dir cannot be written, excludes
    that agent and records the reason.
    """
    project_root = Path(project_root) if project_root is not None else Path.cwd()
    environ = os.environ if environ is None else environ
    report = DetectionReport()

    for agent in agents if agents is not None else list_agents():
        try:
            matched = evaluate_rule(agent.detection, project_root, home_dir, environ)
            reason = unwritable_reason(agent, project_root, home_dir) if matched else None
        except Exception as e:
            error = DetectionError(agent.id, e)
            logger.warning(str(error))
            report.excluded[agent.id] = str(e)
            continue
        if reason is not None:
            logger.warning(f"Skipping {agent.id}: {reason}")
            report.excluded[agent.id] = reason
        elif matched:
            report.present.append(agent)

    logger.debug(f"Detected agents: {', '.join(report.ids) or 'none'}")
    return report


def detect_present(
    project_root: Path | None = None,
    home_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[AgentTarget]:
    """Return the agents whose detection rule matches."""
    return detect(project_root, home_dir, environ).present
