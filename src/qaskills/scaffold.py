"""Scaffold new SKILL.md files from built-in templates."""

import logging
from pathlib import Path

from qaskills.document import SKILL_MD_FILENAME, build_document, serialize
from qaskills.models import SkillDocument

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "generic"
DEFAULT_AGENTS = ["claude-code", "cursor", "github-copilot", "windsurf", "codex"]
DEFAULT_DOMAINS = ["web"]

TEMPLATES: dict[str, str] = {
    "playwright": """# {name}

You are an expert Playwright test automation engineer.

## Guidelines

- Use Page Object Model pattern
- Use web-first assertions (expect(locator).toBeVisible())
- Use auto-waiting locators (getByRole, getByText, getByTestId)
- Always use fixtures for test setup
- Group related tests with describe blocks

## Code Examples

```typescript
import {{ test, expect }} from '@playwright/test';

test('example test', async ({{ page }}) => {{
  await page.goto('/');
  await expect(page.getByRole('heading', {{ name: 'Welcome' }})).toBeVisible();
}});
```
""",
    "cypress": """# {name}

You are an expert Cypress test automation engineer.

## Guidelines

- Use custom commands for reusable actions
- Use cy.intercept() for network stubbing
- Use cy.session() for authentication
- Chain assertions naturally
- Use data-testid attributes for selectors

## Code Examples

```typescript
describe('Feature', () => {{
  it('should work', () => {{
    cy.visit('/');
    cy.get('[data-testid="title"]').should('be.visible');
  }});
}});
```
""",
    "api": """# {name}

You are an expert API test automation engineer.

## Guidelines

- Validate response status codes, headers, and body
- Use JSON Schema validation
- Test error scenarios and edge cases
- Use environment variables for base URLs
- Implement proper test data cleanup

## Code Examples

```typescript
test('GET /api/users', async ({{ request }}) => {{
  const response = await request.get('/api/users');
  expect(response.status()).toBe(200);
  const body = await response.json();
  expect(body).toHaveProperty('users');
}});
```
""",
    "generic": """# {name}

You are a QA testing expert. Follow these guidelines when writing tests.

## Guidelines

- Write clear, descriptive test names
- Follow the Arrange-Act-Assert pattern
- Keep tests independent and idempotent
- Use meaningful assertions
- Handle async operations properly

## Best Practices

- One assertion concept per test
- Use test fixtures for setup/teardown
- Mock external dependencies
- Test both happy and unhappy paths
""",
}


def get_template_content(template: str | None, name: str) -> str:
    """Render a template body; unknown templates use the generic one."""
    key = (template or DEFAULT_TEMPLATE).lower()
    return TEMPLATES.get(key, TEMPLATES[DEFAULT_TEMPLATE]).format(name=name)


def scaffold_document(
    name: str,
    description: str,
    author: str = "",
    template: str = DEFAULT_TEMPLATE,
    testing_type: str = "e2e",
    framework: str | None = None,
    language: str = "typescript",
) -> SkillDocument:
    """Build a new skill document from a template.

    Args:
        name: Skill name.
        description: Short description.
        author: Author handle.
        template: Template name (playwright, cypress, api, generic).
        testing_type: Primary testing type, also used as the only tag.
        framework: Primary framework, or None / "none" for generic.
        language: Primary language.

    Returns:
        The scaffolded SkillDocument.

    Raises:
        ValidationError: If name or description is empty.
    """
    frameworks = [framework] if framework and framework.lower() != "none" else []
    fields = {
        "name": name,
        "description": description,
        "author": author,
        "tags": [testing_type],
        "testingTypes": [testing_type],
        "frameworks": frameworks,
        "languages": [language],
        "domains": DEFAULT_DOMAINS,
        "agents": DEFAULT_AGENTS,
    }
    return build_document(fields, body=get_template_content(template, name.strip()))


def write_scaffold(document: SkillDocument, output: Path) -> Path:
    """Write a scaffolded document, refusing to overwrite an existing file.

    Args:
        document: Document to write.
        output: Target file, or a directory to receive SKILL.md.

    Returns:
        Path of the written file.

    Raises:
        FileExistsError: If the target already exists.
    """
    output = Path(output)
    if output.is_dir():
        output = output / SKILL_MD_FILENAME
    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("x", encoding="utf-8") as f:
        f.write(serialize(document))
    logger.info(f"Created {output}")
    return output
