"""qaskills command-line interface."""

import logging
import sys
from pathlib import Path

import typer

from qaskills import __version__
from qaskills.agents import list_agents, resolve_skills_dir
from qaskills.config import get_config
from qaskills.errors import ManifestNotUpdatedError, QASkillsError
from qaskills.installer import OperationResult, SkillInstaller
from qaskills.models import AgentOutcome, InstallState, WriteAction
from qaskills.scaffold import DEFAULT_TEMPLATE, TEMPLATES, scaffold_document, write_scaffold

# Logging
logger = logging.getLogger(__name__)

# Typer app
app = typer.Typer(help="Install QA testing skills into your AI coding agents.")

AgentOption = typer.Option(
    None,
    "--agent",
    "-a",
    help="Target agent id or name (repeatable). Defaults to detected agents.",
)
ProjectDirOption = typer.Option(
    None,
    "--project-dir",
    help="Project root for project-scoped agents (default: current directory)",
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")

CONFLICT_ADVICE = "resolve manually (diff or delete) before retrying"


def setup_logging(verbose: bool = False):
    """
    Configure logging to output to stderr.
    stdout is kept for command results.
    Log level can be controlled via LOG_LEVEL environment variable.
    """
    config = get_config()
    log_level = getattr(logging, config.log_level.upper(), logging.WARNING)
    if verbose:
        log_level = logging.DEBUG

    log_formatter = logging.Formatter("%(asctime)s [%(levelname)s] - %(message)s")
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(log_formatter)
    root_logger.addHandler(stream_handler)


def format_outcome(outcome: AgentOutcome) -> str:
    """Render one agent's terminal state as a single line."""
    if outcome.state is InstallState.FAILED:
        return f"  {outcome.agent_id}: failed: {outcome.error}"
    if outcome.state is InstallState.CONFLICTED:
        return (
            f"  {outcome.agent_id}: conflicted ({outcome.artifact_path}), {CONFLICT_ADVICE}"
        )
    if outcome.state is InstallState.ABSENT:
        label = "removed" if outcome.action is WriteAction.REMOVED else "not installed"
        return f"  {outcome.agent_id}: {label}"
    if outcome.action is WriteAction.UNCHANGED:
        return f"  {outcome.agent_id}: unchanged"
    return f"  {outcome.agent_id}: {outcome.status}"


def print_result(result: OperationResult) -> None:
    title = result.skill_id
    if result.document is not None:
        title = f"{title} v{result.document.version}"
    typer.echo(f"{result.action} {title}")

    if not result.outcomes:
        typer.echo("  no agents targeted")
    for outcome in result.outcomes:
        typer.echo(format_outcome(outcome))
    for agent_id, reason in result.excluded.items():
        typer.echo(f"  {agent_id}: skipped: {reason}", err=True)

    tally = result.tally()
    summary = ", ".join(f"{count} {status}" for status, count in sorted(tally.items()))
    typer.echo(f"{len(result.outcomes)} agent(s): {summary or 'nothing to do'}")


def _run(verbose: bool, project_dir: Path | None, operation) -> None:
    setup_logging(verbose)
    installer = SkillInstaller(project_dir)
    try:
        result = operation(installer)
    except ManifestNotUpdatedError as e:
        print_result(e.result)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except QASkillsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    print_result(result)
    installer.reporter.flush()
    raise typer.Exit(code=result.exit_code)


@app.command()
def add(
    skill: str = typer.Argument(..., help="Registry id/slug, or path to a SKILL.md"),
    agent: list[str] | None = AgentOption,
    project_dir: Path | None = ProjectDirOption,
    verbose: bool = VerboseOption,
):
    """
    Install a skill into detected (or the given) agents.
    """
    _run(verbose, project_dir, lambda installer: installer.add(skill, agent))


@app.command()
def update(
    skill: str = typer.Argument(..., help="Registry id/slug, or path to a SKILL.md"),
    agent: list[str] | None = AgentOption,
    project_dir: Path | None = ProjectDirOption,
    verbose: bool = VerboseOption,
):
    """
    Update an installed skill to the latest version.
    """
    _run(verbose, project_dir, lambda installer: installer.update(skill, agent))


@app.command()
def remove(
    skill: str = typer.Argument(..., help="Name of the installed skill"),
    agent: list[str] | None = AgentOption,
    project_dir: Path | None = ProjectDirOption,
    verbose: bool = VerboseOption,
):
    """
    Remove a skill from recorded and detected agents.
    """
    _run(verbose, project_dir, lambda installer: installer.remove(skill, agent))


@app.command("list")
def list_command(
    agents: bool = typer.Option(False, "--agents", help="List detected agents instead"),
    project_dir: Path | None = ProjectDirOption,
    verbose: bool = VerboseOption,
):
    """
    List installed skills, or detected agents with --agents.
    """
    setup_logging(verbose)
    installer = SkillInstaller(project_dir)

    if agents:
        report = installer.detect()
        present = set(report.ids)
        for target in list_agents():
            skills_dir = resolve_skills_dir(target, installer.project_root, installer.home_dir)
            if target.id in present:
                marker = "detected"
            elif target.id in report.excluded:
                marker = f"skipped: {report.excluded[target.id]}"
            else:
                marker = "not detected"
            typer.echo(f"{target.id:<16} {target.display_name:<20} {marker:<14} {skills_dir}")
        return

    try:
        statuses = installer.status()
    except QASkillsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if not statuses:
        typer.echo("No skills installed.")
        return
    for entry in statuses:
        record = entry.record
        typer.echo(
            f"{record.skill_id} v{record.installed_version}  {record.agent_id:<16} "
            f"{entry.state.value:<10} {record.artifact_path}"
        )


@app.command()
def init(
    template: str = typer.Argument(
        DEFAULT_TEMPLATE, help=f"Template name ({', '.join(TEMPLATES)})"
    ),
    name: str = typer.Option(..., prompt="Skill name", help="Skill name"),
    description: str = typer.Option(..., prompt="Description", help="Short description"),
    testing_type: str = typer.Option("e2e", prompt="Primary testing type"),
    framework: str = typer.Option("none", prompt="Primary framework"),
    language: str = typer.Option("typescript", prompt="Primary language"),
    author: str = typer.Option("", prompt="Author"),
    output: Path = typer.Option(Path("SKILL.md"), "--output", "-o", help="Output file"),
):
    """
    Scaffold a new SKILL.md for your QA skill.
    """
    setup_logging()
    try:
        document = scaffold_document(
            name,
            description,
            author=author,
            template=template,
            testing_type=testing_type,
            framework=framework,
            language=language,
        )
        path = write_scaffold(document, output)
    except QASkillsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    except FileExistsError:
        typer.echo(f"Error: {output} already exists", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Created SKILL.md at {path}")


@app.command()
def repair(
    project_dir: Path | None = ProjectDirOption,
    verbose: bool = VerboseOption,
):
    """
    Rebuild the install manifest from artifacts on disk.
    """
    setup_logging(verbose)
    installer = SkillInstaller(project_dir)
    try:
        result = installer.repair()
    except QASkillsError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if result.quarantined is not None:
        typer.echo(f"Moved corrupt manifest to {result.quarantined}")
    for path, reason in result.skipped.items():
        typer.echo(f"  skipped {path}: {reason}", err=True)
    typer.echo(f"Rebuilt manifest with {len(result.records)} record(s)")


@app.command()
def version():
    """
    Show the CLI version.
    """
    typer.echo(__version__)


if __name__ == "__main__":
    app()
