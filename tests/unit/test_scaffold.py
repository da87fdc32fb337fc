"""Unit tests for skill scaffolding."""

import pytest

from qaskills.document import parse_file
from qaskills.errors import ValidationError
from qaskills.scaffold import (
    DEFAULT_AGENTS,
    TEMPLATES,
    get_template_content,
    scaffold_document,
    write_scaffold,
)


@pytest.mark.unit
class TestTemplates:
    """Test template rendering."""

    @pytest.mark.parametrize("template", sorted(TEMPLATES))
    def test_template_starts_with_heading(self, template):
        """Every template renders a heading with the skill name."""
        content = get_template_content(template, "my-skill")
        assert content.startswith("# my-skill\n")

    def test_code_braces_survive_formatting(self):
        """Literal braces in code samples are kept."""
        content = get_template_content("playwright", "pw")
        assert "import { test, expect } from '@playwright/test';" in content

    def test_unknown_template_falls_back_to_generic(self):
        """Unknown template names use the generic template."""
        assert get_template_content("selenium", "x") == get_template_content("generic", "x")


@pytest.mark.unit
class TestScaffoldDocument:
    """Test building scaffolded documents."""

    def test_fields(self):
        """Scaffolded documents get the default metadata."""
        doc = scaffold_document(
            "checkout-flow",
            "Checkout flow tests",
            author="qa-team",
            template="cypress",
            testing_type="e2e",
            framework="cypress",
            language="typescript",
        )

        assert doc.version == "1.0.0"
        assert doc.license == "MIT"
        assert doc.tags == ["e2e"]
        assert doc.testing_types == ["e2e"]
        assert doc.frameworks == ["cypress"]
        assert doc.languages == ["typescript"]
        assert doc.domains == ["web"]
        assert doc.agents == DEFAULT_AGENTS
        assert "Cypress test automation engineer" in doc.body

    def test_no_framework(self):
        """'none' as framework leaves frameworks empty."""
        doc = scaffold_document("x", "y", framework="none")
        assert doc.frameworks == []

    def test_missing_description_rejected(self):
        """Scaffolding still validates required fields."""
        with pytest.raises(ValidationError):
            scaffold_document("x", "")


@pytest.mark.unit
class TestWriteScaffold:
    """Test writing scaffolded files."""

    def test_write_and_parse_back(self, tmp_path):
        """The written file parses back into the same document."""
        doc = scaffold_document("api-contract", "API contract tests", template="api")

        path = write_scaffold(doc, tmp_path)

        assert path == tmp_path / "SKILL.md"
        assert parse_file(path) == doc

    def test_refuses_to_overwrite(self, tmp_path):
        """An existing file is never replaced."""
        target = tmp_path / "SKILL.md"
        target.write_text("keep me")

        with pytest.raises(FileExistsError):
            write_scaffold(scaffold_document("x", "y"), target)
        assert target.read_text() == "keep me"
