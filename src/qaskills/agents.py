"""Static catalog of supported AI coding agents.

Each agent is a data entry: adding support for a new agent means adding an
AgentTarget here, the detector and writer consume the catalog uniformly.
Removing an entry orphans manifest records that reference it.
"""

import os
from pathlib import Path

from qaskills.errors import PathTraversalError, UnsupportedAgentError
from qaskills.models import AgentTarget, DetectionRule

GENERIC_AGENT_ID = "generic"

AGENTS: tuple[AgentTarget, ...] = (
    AgentTarget(
        id="claude-code",
        display_name="Claude Code",
        config_dir=".claude",
        skills_dir=".claude/skills",
        artifact_filename="{name}/SKILL.md",
        detection=DetectionRule(
            paths=(".claude", "CLAUDE.md", "~/.claude"), env=("CLAUDECODE",)
        ),
        website="https://docs.anthropic.com/en/docs/claude-code",
    ),
    AgentTarget(
        id="cursor",
        display_name="Cursor",
        config_dir=".cursor",
        skills_dir=".cursor/rules",
        artifact_filename="{name}.md",
        detection=DetectionRule(paths=(".cursor", ".cursorrules")),
        website="https://cursor.com",
    ),
    AgentTarget(
        id="github-copilot",
        display_name="GitHub Copilot",
        config_dir=".github",
        skills_dir=".github/instructions",
        artifact_filename="{name}.instructions.md",
        detection=DetectionRule(
            paths=(".github/copilot-instructions.md", ".github/instructions")
        ),
        website="https://github.com/features/copilot",
    ),
    AgentTarget(
        id="windsurf",
        display_name="Windsurf",
        config_dir=".windsurf",
        skills_dir=".windsurf/rules",
        artifact_filename="{name}.md",
        detection=DetectionRule(paths=(".windsurf", ".windsurfrules")),
        website="https://windsurf.com",
    ),
    AgentTarget(
        id="codex",
        display_name="Codex",
        config_dir="~/.codex",
        skills_dir="~/.codex/skills",
        artifact_filename="{name}/SKILL.md",
        detection=DetectionRule(paths=("~/.codex",)),
        website="https://github.com/openai/codex",
    ),
    AgentTarget(
        id="aider",
        display_name="Aider",
        config_dir=".aider",
        skills_dir=".aider/conventions",
        artifact_filename="{name}.md",
        detection=DetectionRule(paths=(".aider.conf.yml", ".aider")),
        website="https://aider.chat",
    ),
    AgentTarget(
        id="continue",
        display_name="Continue",
        config_dir=".continue",
        skills_dir=".continue/rules",
        artifact_filename="{name}.md",
        detection=DetectionRule(paths=(".continue",)),
        website="https://continue.dev",
    ),
    AgentTarget(
        id="cline",
        display_name="Cline",
        config_dir=".cline",
        skills_dir=".cline/rules",
        artifact_filename="{name}.md",
        detection=DetectionRule(paths=(".cline", ".clinerules")),
        website="https://cline.bot",
    ),
    # Fallback target, never detected
    AgentTarget(
        id=GENERIC_AGENT_ID,
        display_name="Generic (.agents)",
        config_dir=".agents",
        skills_dir=".agents/skills",
        artifact_filename="{name}/SKILL.md",
    ),
)

_AGENTS_BY_ID: dict[str, AgentTarget] = {agent.id: agent for agent in AGENTS}

if len(_AGENTS_BY_ID) != len(AGENTS):
    raise RuntimeError("Duplicate agent id in registry")


def list_agents() -> list[AgentTarget]:
    """Return the full agent catalog."""
    return list(AGENTS)


def get_agent(id_or_name: str) -> AgentTarget:
    """Look up an agent by id or display name (case-insensitive).

    Raises:
        UnsupportedAgentError: If no agent matches.
    """
    key = id_or_name.strip().lower()
    if key in _AGENTS_BY_ID:
        return _AGENTS_BY_ID[key]
    for agent in AGENTS:
        if agent.display_name.lower() == key:
            return agent
    raise UnsupportedAgentError(id_or_name)


def _ensure_registered(agent: AgentTarget) -> None:
    if _AGENTS_BY_ID.get(agent.id) != agent:
        raise UnsupportedAgentError(agent.id)


def _lexical(path: Path) -> Path:
    # Absolute and normalized, symlinks left in place
    return Path(os.path.abspath(path))


def expand_template(template: str, project_root: Path, home_dir: Path | None = None) -> Path:
    """Expand a path template against the home dir ("~") or the project root.

    The result is normalized without following symlinks, so an agent config
    dir that links elsewhere keeps its in-project path.
    """
    if template == "~" or template.startswith("~/"):
        base = Path(home_dir) if home_dir is not None else Path.home()
        return _lexical(base / template[2:])
    return _lexical(Path(project_root) / template)


def _root_for(template: str, project_root: Path, home_dir: Path | None) -> Path:
    if template.startswith("~"):
        return _lexical(Path(home_dir) if home_dir is not None else Path.home())
    return _lexical(Path(project_root))


def resolve_config_dir(
    agent: AgentTarget, project_root: Path, home_dir: Path | None = None
) -> Path:
    """Absolute path of the agent's configuration directory."""
    _ensure_registered(agent)
    return expand_template(agent.config_dir, project_root, home_dir)


def resolve_skills_dir(
    agent: AgentTarget, project_root: Path, home_dir: Path | None = None
) -> Path:
    """Absolute path of the directory that receives the agent's artifacts."""
    _ensure_registered(agent)
    return expand_template(agent.skills_dir, project_root, home_dir)


def _check_skill_name(skill_name: str) -> None:
    if (
        not skill_name
        or skill_name in (".", "..")
        or skill_name.startswith(".")
        or "/" in skill_name
        or "\\" in skill_name
        or "\x00" in skill_name
    ):
        raise PathTraversalError(f"Invalid skill name for an artifact path: {skill_name!r}")


def resolve_target_path(
    agent: AgentTarget,
    project_root: Path,
    skill_name: str,
    home_dir: Path | None = None,
) -> Path:
    """Resolve the absolute artifact path for a skill in an agent.

    Args:
        agent: Registered agent.
        project_root: Project root for project-scoped agents.
        skill_name: Skill identity used in the artifact filename.
        home_dir: Home directory for global agents (default: Path.home()).

    Returns:
        Absolute artifact path.

    Raises:
        UnsupportedAgentError: If the agent is not in the registry.
        PathTraversalError: If the path would escape its root.
    """
    _ensure_registered(agent)
    _check_skill_name(skill_name)

    root = _root_for(agent.skills_dir, project_root, home_dir)
    skills_dir = expand_template(agent.skills_dir, project_root, home_dir)
    target = _lexical(skills_dir / agent.artifact_filename.format(name=skill_name))

    if not target.is_relative_to(root) or not target.is_relative_to(skills_dir):
        raise PathTraversalError(f"Artifact path {target} escapes {root}")
    return target
