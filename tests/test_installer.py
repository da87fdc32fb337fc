"""Tests for install orchestration across detector, writer and manifest.

Includes the end-to-end playwright-e2e scenario: one agent installs
cleanly while a second one is blocked by an unrelated file of the same
name, through install, update and remove.
"""

from unittest.mock import Mock

import pytest

from qaskills.config import Config
from qaskills.document import serialize
from qaskills.errors import (
    ManifestCorruptionError,
    ManifestIOError,
    ManifestNotUpdatedError,
    RegistryError,
    ValidationError,
)
from qaskills.installer import SkillInstaller
from qaskills.models import InstallState


@pytest.fixture
def sources(tmp_path, skill_document):
    """Write v1.0.0 and v1.1.0 of the skill as local SKILL.md sources."""
    paths = {}
    for version in ("1.0.0", "1.1.0"):
        directory = tmp_path / "sources" / version
        directory.mkdir(parents=True)
        doc = skill_document.model_copy(update={"version": version})
        (directory / "SKILL.md").write_text(serialize(doc), encoding="utf-8")
        paths[version] = str(directory / "SKILL.md")
    return paths


@pytest.fixture
def reporter():
    return Mock()


@pytest.fixture
def installer(project_dir, home_dir, reporter):
    return SkillInstaller(
        project_dir, home_dir, config=Config(), reporter=reporter, environ={}
    )


def states(result):
    return {outcome.agent_id: outcome.status for outcome in result.outcomes}


@pytest.mark.unit
class TestEndToEnd:
    """The install / update / remove lifecycle across two agents."""

    def test_playwright_e2e_scenario(self, installer, project_dir, sources):
        """A installs and updates, B stays conflicted, remove on A leaves B alone."""
        (project_dir / ".claude").mkdir()
        foreign = project_dir / ".cursor" / "rules" / "playwright-e2e.md"
        foreign.parent.mkdir(parents=True)
        foreign.write_text("# my unrelated cursor rule\n")

        first = installer.add(sources["1.0.0"])

        assert states(first) == {"claude-code": "installed", "cursor": "conflicted"}
        assert first.exit_code == 0
        artifact = project_dir / ".claude" / "skills" / "playwright-e2e" / "SKILL.md"
        assert "version: 1.0.0" in artifact.read_text()

        second = installer.add(sources["1.1.0"])

        assert states(second) == {"claude-code": "updated", "cursor": "conflicted"}
        assert "version: 1.1.0" in artifact.read_text()
        assert installer.tracker.find("playwright-e2e", "claude-code").installed_version == "1.1.0"

        removed = installer.remove("playwright-e2e", ["claude-code"])

        assert states(removed) == {"claude-code": "absent"}
        assert not artifact.exists()
        assert foreign.read_text() == "# my unrelated cursor rule\n"
        assert installer.tracker.load() == []

    def test_second_install_is_idempotent(self, installer, project_dir, sources):
        """Repeating an install leaves the manifest record untouched."""
        (project_dir / ".windsurf").mkdir()

        installer.add(sources["1.0.0"])
        before = installer.tracker.find("playwright-e2e", "windsurf")
        again = installer.add(sources["1.0.0"])

        assert states(again) == {"windsurf": "installed"}
        assert installer.tracker.find("playwright-e2e", "windsurf") == before


@pytest.mark.unit
class TestTargetSelection:
    """Test which agents an operation targets."""

    def test_generic_fallback_when_nothing_detected(self, installer, project_dir, sources):
        """With no agents present the generic target receives the skill."""
        result = installer.add(sources["1.0.0"])

        assert states(result) == {"generic": "installed"}
        assert (project_dir / ".agents" / "skills" / "playwright-e2e" / "SKILL.md").exists()

    def test_explicit_agent_need_not_be_detected(self, installer, project_dir, sources):
        """An override may name an agent that is not detected."""
        (project_dir / ".claude").mkdir()

        result = installer.add(sources["1.0.0"], ["Windsurf"])

        assert states(result) == {"windsurf": "installed"}
        assert not (project_dir / ".claude" / "skills").exists()

    def test_symlinked_config_dir_installs(self, installer, project_dir, tmp_path, sources):
        """A detected agent whose config dir is a symlink installs through the link."""
        shared = tmp_path / "dotfiles" / "claude"
        shared.mkdir(parents=True)
        (project_dir / ".claude").symlink_to(shared, target_is_directory=True)

        result = installer.add(sources["1.0.0"])

        assert states(result) == {"claude-code": "installed"}
        assert result.exit_code == 0
        assert (shared / "skills" / "playwright-e2e" / "SKILL.md").is_file()

        removed = installer.remove("playwright-e2e")

        assert states(removed) == {"claude-code": "absent"}
        assert not (shared / "skills" / "playwright-e2e").exists()

    def test_unknown_agent_fails_alone(self, installer, sources):
        """An unknown override fails without affecting the others."""
        result = installer.add(sources["1.0.0"], ["cursor", "notepad"])

        assert states(result) == {"cursor": "installed", "notepad": "failed"}
        assert result.exit_code == 0

    def test_all_failed_exits_non_zero(self, installer, sources):
        """Only unknown agents means every target failed."""
        result = installer.add(sources["1.0.0"], ["notepad"])
        assert result.exit_code == 1

    def test_all_conflicted_exits_non_zero(self, installer, project_dir, sources):
        """Every agent conflicted is a failed invocation."""
        foreign = project_dir / ".cursor" / "rules" / "playwright-e2e.md"
        foreign.parent.mkdir(parents=True)
        foreign.write_text("mine")

        result = installer.add(sources["1.0.0"])

        assert states(result) == {"cursor": "conflicted"}
        assert result.exit_code == 1

    def test_update_targets_recorded_agents(self, installer, project_dir, sources):
        """update only touches agents the skill is installed in."""
        installer.add(sources["1.0.0"], ["claude-code"])
        (project_dir / ".cursor").mkdir()

        result = installer.update(sources["1.1.0"])

        assert states(result) == {"claude-code": "updated"}
        assert not (project_dir / ".cursor" / "rules").exists()

    def test_update_without_install_is_absent(self, installer, project_dir, sources):
        """Updating a skill that is nowhere installed writes nothing."""
        (project_dir / ".cursor").mkdir()

        result = installer.update(sources["1.1.0"])

        assert states(result) == {"cursor": "absent"}
        assert result.exit_code == 0
        assert not (project_dir / ".cursor" / "rules").exists()

    def test_update_conflict_leaves_bytes(self, installer, project_dir, sources):
        """A hand-edited artifact blocks update and keeps its bytes."""
        installer.add(sources["1.0.0"], ["cursor"])
        artifact = project_dir / ".cursor" / "rules" / "playwright-e2e.md"
        artifact.write_text("hand edited")

        result = installer.update(sources["1.1.0"])

        assert states(result) == {"cursor": "conflicted"}
        assert artifact.read_text() == "hand edited"
        assert installer.tracker.find("playwright-e2e", "cursor").installed_version == "1.0.0"

    def test_remove_recorded_and_detected(self, installer, project_dir, sources):
        """remove covers recorded agents and currently detected ones."""
        installer.add(sources["1.0.0"], ["windsurf"])
        (project_dir / ".cursor").mkdir()

        result = installer.remove("playwright-e2e")

        assert states(result) == {"windsurf": "absent", "cursor": "absent"}
        assert installer.tracker.load() == []


@pytest.mark.unit
class TestAbortBeforeWrite:
    """Test errors that stop an invocation before any write."""

    def test_corrupt_manifest_aborts(self, installer, project_dir, sources):
        """A corrupt manifest is never overwritten implicitly."""
        installer.tracker.manifest_path.parent.mkdir(parents=True)
        installer.tracker.manifest_path.write_text("{broken")

        with pytest.raises(ManifestCorruptionError):
            installer.add(sources["1.0.0"], ["cursor"])

        assert not (project_dir / ".cursor").exists()
        assert installer.tracker.manifest_path.read_text() == "{broken"

    def test_unreadable_manifest_aborts(self, installer, project_dir, sources):
        """A manifest location that cannot be read stops the invocation."""
        (project_dir / ".qaskills").write_text("not a directory")

        with pytest.raises(ManifestIOError):
            installer.add(sources["1.0.0"], ["cursor"])

        assert not (project_dir / ".cursor").exists()

    def test_invalid_document_aborts(self, installer, project_dir, tmp_path):
        """A skill without description is rejected before writing."""
        source = tmp_path / "bad" / "SKILL.md"
        source.parent.mkdir()
        source.write_text("---\nname: bad\n---\n\nbody\n")

        with pytest.raises(ValidationError):
            installer.add(str(source), ["cursor"])

        assert not (project_dir / ".cursor").exists()

    def test_registry_failure_aborts(self, project_dir, home_dir, reporter, monkeypatch, tmp_path):
        """A failed fetch raises and writes nothing."""
        monkeypatch.chdir(tmp_path)
        client = Mock()
        client.get_skill.side_effect = RegistryError("Not found in registry")
        installer = SkillInstaller(
            project_dir, home_dir, config=Config(), reporter=reporter, client=client, environ={}
        )

        with pytest.raises(RegistryError):
            installer.add("no-such-skill", ["cursor"])

        assert not (project_dir / ".cursor").exists()
        reporter.report.assert_not_called()


@pytest.mark.unit
class TestManifestWriteFailure:
    """Test a manifest commit that fails after artifacts were written."""

    def test_outcomes_survive_failed_commit(
        self, installer, project_dir, reporter, sources, monkeypatch
    ):
        """The error carries the per-agent outcomes and repair records the artifact."""

        def disk_full(content):
            raise OSError(28, "No space left on device")

        with monkeypatch.context() as patched:
            patched.setattr(installer.tracker, "_replace", disk_full)
            with pytest.raises(ManifestNotUpdatedError) as exc_info:
                installer.add(sources["1.0.0"], ["cursor"])

        assert states(exc_info.value.result) == {"cursor": "installed"}
        assert "qaskills repair" in str(exc_info.value)
        assert (project_dir / ".cursor" / "rules" / "playwright-e2e.md").is_file()
        assert installer.tracker.load() == []
        reporter.report.assert_not_called()

        repaired = installer.repair()

        assert [(r.skill_id, r.agent_id) for r in repaired.records] == [
            ("playwright-e2e", "cursor")
        ]


@pytest.mark.unit
class TestRegistrySource:
    """Test installing by registry slug."""

    def test_add_from_registry_fields(self, project_dir, home_dir, reporter, monkeypatch, tmp_path):
        """Registry JSON is turned into a document when content is unavailable."""
        monkeypatch.chdir(tmp_path)
        client = Mock()
        client.get_skill.return_value = {
            "name": "api-contract",
            "description": "API contract testing",
            "version": "2.0.0",
            "tags": ["api"],
        }
        client.get_skill_content.side_effect = RegistryError("Not found in registry")
        installer = SkillInstaller(
            project_dir, home_dir, config=Config(), reporter=reporter, client=client, environ={}
        )

        result = installer.add("api-contract", ["cursor"])

        assert states(result) == {"cursor": "installed"}
        text = (project_dir / ".cursor" / "rules" / "api-contract.md").read_text()
        assert "version: 2.0.0" in text
        assert "# api-contract\n\nAPI contract testing\n" in text


@pytest.mark.unit
class TestTelemetry:
    """Test telemetry reporting from the installer."""

    def test_reported_once_per_operation(self, installer, reporter, sources):
        """One event per invocation with the successful agents."""
        installer.add(sources["1.0.0"], ["cursor", "windsurf"])

        reporter.report.assert_called_once()
        event = reporter.report.call_args.args[0]
        assert event.skill_id == "playwright-e2e"
        assert event.action == "install"
        assert event.agents == ["cursor", "windsurf"]

    def test_not_reported_when_everything_failed(self, installer, reporter, sources):
        """No event is sent for a fully failed invocation."""
        installer.add(sources["1.0.0"], ["notepad"])
        reporter.report.assert_not_called()


@pytest.mark.unit
class TestStatusAndRepair:
    """Test listing and rebuilding install state."""

    def test_status_reports_drift(self, installer, project_dir, sources):
        """status shows installed and hand-edited artifacts."""
        installer.add(sources["1.0.0"], ["cursor", "windsurf"])
        (project_dir / ".cursor" / "rules" / "playwright-e2e.md").write_text("edited")

        statuses = {entry.record.agent_id: entry.state for entry in installer.status()}

        assert statuses == {"cursor": InstallState.CONFLICTED, "windsurf": InstallState.INSTALLED}

    def test_repair_rebuilds_corrupt_manifest(self, installer, sources):
        """repair quarantines the manifest and recovers records from artifacts."""
        installer.add(sources["1.0.0"], ["claude-code", "cursor"])
        expected = {r.key: r.content_hash for r in installer.tracker.load()}
        installer.tracker.manifest_path.write_text("not json")

        result = installer.repair()

        assert result.quarantined is not None
        assert result.quarantined.read_text() == "not json"
        assert {r.key: r.content_hash for r in installer.tracker.load()} == expected

        again = installer.add(sources["1.0.0"], ["claude-code", "cursor"])
        assert states(again) == {"claude-code": "installed", "cursor": "installed"}

    def test_repair_skips_foreign_files(self, installer, project_dir):
        """Files that are not skill documents are not adopted."""
        rules = project_dir / ".cursor" / "rules"
        rules.mkdir(parents=True)
        (rules / "style.md").write_text("# plain markdown rule\n")

        result = installer.repair()

        assert result.records == []
        assert str((rules / "style.md").resolve()) in result.skipped
