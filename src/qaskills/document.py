"""SKILL.md document model - build, serialize and parse skill documents."""

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from qaskills.errors import ParseError, RegistryError, ValidationError
from qaskills.models import SkillDocument

if TYPE_CHECKING:
    from qaskills.api_client import RegistryClient

logger = logging.getLogger(__name__)

SKILL_MD_FILENAME = "SKILL.md"
FRONTMATTER_MARKER = "---"

DEFAULT_VERSION = "1.0.0"
DEFAULT_LICENSE = "MIT"

# On-disk key -> model attribute, in serialization order
FRONTMATTER_KEYS: tuple[tuple[str, str], ...] = (
    ("name", "name"),
    ("description", "description"),
    ("version", "version"),
    ("author", "author"),
    ("license", "license"),
    ("tags", "tags"),
    ("testingTypes", "testing_types"),
    ("frameworks", "frameworks"),
    ("languages", "languages"),
    ("domains", "domains"),
    ("agents", "agents"),
    ("githubUrl", "github_url"),
)
_ALWAYS_EMITTED = ("name", "description", "version", "author", "license")

# Aliases accepted from registry JSON and hand-written frontmatter
_FIELD_ALIASES: dict[str, str] = {
    **{key: attr for key, attr in FRONTMATTER_KEYS},
    **{attr: attr for _, attr in FRONTMATTER_KEYS},
}

# Format: ---\nYAML content\n---\n\nMarkdown body
_FRONTMATTER_PATTERN = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)(.*)\Z",
    re.DOTALL | re.MULTILINE,
)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _fallback_body(name: str, description: str) -> str:
    return f"# {name}\n\n{description}"


def build_document(fields: Mapping[str, Any], body: str | None = None) -> SkillDocument:
    """Build a SkillDocument from structured fields.

    Args:
        fields: Skill fields, using registry (camelCase) or snake_case keys.
            Unknown keys are ignored, except ``fullDescription`` and ``body``
            which are used as the body source.
        body: Explicit body text. Takes precedence over fields.

    Returns:
        Validated SkillDocument with defaults applied.

    Raises:
        ValidationError: If name or description is empty.
    """
    values: dict[str, Any] = {}
    for key, value in fields.items():
        attr = _FIELD_ALIASES.get(key)
        if attr is None or _is_blank(value):
            continue
        values[attr] = value

    name = str(values.get("name", "")).strip()
    description = str(values.get("description", "")).strip()
    if not name:
        raise ValidationError("Skill name is required")
    if not description:
        raise ValidationError(f"Skill '{name}' has no description")

    values.setdefault("version", DEFAULT_VERSION)
    values.setdefault("license", DEFAULT_LICENSE)

    if body is None or not body.strip():
        for source in ("fullDescription", "body"):
            candidate = fields.get(source)
            if isinstance(candidate, str) and candidate.strip():
                body = candidate
                break
        else:
            body = _fallback_body(name, description)
    values["body"] = body.strip()

    try:
        return SkillDocument(**values)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid skill fields: {e}") from e


def _frontmatter_dict(doc: SkillDocument) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key, attr in FRONTMATTER_KEYS:
        value = getattr(doc, attr)
        if key in _ALWAYS_EMITTED:
            data[key] = value
        elif not _is_blank(value):
            data[key] = list(value) if isinstance(value, list) else value
    for key, value in doc.extra.items():
        if key not in data:
            data[key] = value
    return data


def serialize(doc: SkillDocument) -> str:
    """Serialize a document to SKILL.md text.

    Keys are emitted in a fixed order and empty array fields are omitted.
    """
    frontmatter_yaml = yaml.safe_dump(
        _frontmatter_dict(doc),
        allow_unicode=True,
        sort_keys=False,
        default_flow_style=False,
        width=4096,
    )
    return f"{FRONTMATTER_MARKER}\n{frontmatter_yaml}{FRONTMATTER_MARKER}\n\n{doc.body.strip()}\n"


def parse(text: str) -> SkillDocument:
    """Parse SKILL.md text into a SkillDocument.

    Raises:
        ParseError: If frontmatter delimiters or YAML are malformed.
        ValidationError: If required fields are missing.
    """
    match = _FRONTMATTER_PATTERN.match(text.lstrip("\ufeff"))
    if not match:
        raise ParseError(
            "Invalid SKILL.md format. Expected YAML frontmatter between '---' markers."
        )

    yaml_content = match.group(1)
    markdown_body = match.group(2).strip()

    try:
        frontmatter_dict = yaml.safe_load(yaml_content) if yaml_content.strip() else {}
    except yaml.YAMLError as e:
        raise ParseError(f"Failed to parse YAML frontmatter: {e}") from e

    if not isinstance(frontmatter_dict, dict):
        raise ParseError("Frontmatter must be a YAML dictionary")

    values: dict[str, Any] = {}
    extra: dict[str, Any] = {}
    for key, value in frontmatter_dict.items():
        attr = _FIELD_ALIASES.get(str(key))
        if attr is None:
            extra[str(key)] = value
        elif value is None:
            continue
        elif attr in ("version", "license") and _is_blank(value):
            # Blank version/license fall back to the model defaults
            continue
        else:
            values[attr] = value

    if not str(values.get("name", "")).strip():
        raise ValidationError("Frontmatter is missing 'name'")
    if not str(values.get("description", "")).strip():
        raise ValidationError("Frontmatter is missing 'description'")

    try:
        return SkillDocument(**values, body=markdown_body, extra=extra)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid frontmatter: {e}") from e


def parse_file(path: Path) -> SkillDocument:
    """Parse a SKILL.md file, or the SKILL.md inside a directory."""
    path = Path(path).expanduser()
    if path.is_dir():
        path = path / SKILL_MD_FILENAME
    content = path.read_text(encoding="utf-8")
    return parse(content)


def fetch_document(slug: str, client: "RegistryClient") -> SkillDocument:
    """Fetch a skill from the remote registry.

    Prefers the registry's rendered SKILL.md; falls back to reconstructing
    the document from the skill's JSON fields.

    Raises:
        RegistryError: If the skill cannot be fetched.
        ValidationError: If the registry fields are incomplete.
    """
    data = client.get_skill(slug)
    if not isinstance(data, Mapping):
        raise RegistryError(f"Unexpected registry response for skill '{slug}'")

    try:
        return parse(client.get_skill_content(slug))
    except (RegistryError, ParseError, ValidationError) as e:
        logger.info(f"Content endpoint unusable for '{slug}', rebuilding from fields: {e}")

    return build_document(data)
