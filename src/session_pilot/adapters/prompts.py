"""Session titles and prompts built from item fields."""

from pathlib import Path
from typing import Optional

from session_pilot.adapters.sources.mappings import expand_template
from session_pilot.core import Item


def build_session_title(template: Optional[str], item: Item) -> str:
    """Expand a ``session.name`` template, defaulting to the item title."""
    if template:
        return expand_template(template, item)
    return item.title or f"session-{item.id}"


def build_prompt(template_name: str, item: Item, templates_dir: Path) -> str:
    """
    Load ``<templates_dir>/<template_name>.md`` and expand it with item fields.

    Without a template file the prompt is the item title and body.
    """
    template_path = templates_dir / f"{template_name}.md"
    if not template_path.is_file():
        return "\n\n".join(part for part in (item.title, item.body) if part)

    with open(template_path, "r", encoding="utf-8") as f:
        template = f.read()
    return expand_template(template, item)
