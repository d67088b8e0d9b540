"""Shared helpers for turning raw tracker payloads into items."""

import logging
import re
from datetime import datetime
from typing import Any, Optional, Union

from session_pilot.core import Item

logger = logging.getLogger(__name__)

TEMPLATE_FIELD = re.compile(r"\{([^}]+)\}")
REGEX_MAPPING = re.compile(r"^(\w+):/(.+)/$")


def get_nested_value(obj: Any, path: str) -> Any:
    """Get a value from nested dicts using dot notation."""
    value = obj
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def expand_template(template: str, source: Union[Item, dict]) -> str:
    """
    Substitute ``{field}`` and ``{field.nested}`` placeholders.

    Args:
        template: Template text
        source: Item or raw dict providing the values

    Returns:
        Expanded text; unresolved placeholders are left as they are
    """
    def substitute(match: re.Match) -> str:
        path = match.group(1)
        value = source.get(path) if isinstance(source, Item) else get_nested_value(source, path)
        return match.group(0) if value is None else str(value)

    return TEMPLATE_FIELD.sub(substitute, template)


def apply_mappings(raw: dict, mappings: Optional[dict[str, str]]) -> dict:
    """
    Add normalized fields to a raw item.

    A mapping value is either a dotted path (``"repository.nameWithOwner"``)
    or a regex extraction (``"url:/issue/([A-Z]+-\\d+)/"``) that takes the
    first group, or the whole match, from another field.
    """
    if not mappings:
        return raw

    result = dict(raw)
    for target, source_path in mappings.items():
        regex_match = REGEX_MAPPING.match(source_path)
        if regex_match:
            field_name, pattern = regex_match.groups()
            field_value = get_nested_value(raw, field_name)
            if field_value:
                match = re.search(pattern, str(field_value))
                result[target] = (match.group(1) if match.groups() else match.group(0)) if match else None
        else:
            result[target] = get_nested_value(raw, source_path)
    return result


def transform_items(raw_items: list[dict], id_template: Optional[str]) -> list[dict]:
    """Assign ids from the template (or an existing ``id``), dropping items without one."""
    result = []
    for raw in raw_items:
        if id_template:
            item_id = expand_template(id_template, raw)
            if TEMPLATE_FIELD.search(item_id):
                item_id = None
        else:
            item_id = raw.get("id")

        if not item_id:
            logger.warning("Dropping item without id: %s", raw.get("title") or raw)
            continue
        result.append({**raw, "id": str(item_id)})
    return result


def parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None


def _label_name(label: Any) -> str:
    if isinstance(label, dict):
        return str(label.get("name") or "")
    return str(label)


def _login(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("login") or value.get("name")
    return value or None


def _repository(raw: dict) -> Optional[str]:
    for path in ("repository_full_name", "repository.full_name", "repository.nameWithOwner"):
        value = get_nested_value(raw, path)
        if value:
            return str(value)
    repo = raw.get("repository")
    return repo if isinstance(repo, str) and "/" in repo else None


def _state(raw: dict) -> Optional[str]:
    value = raw.get("state") or raw.get("status")
    if isinstance(value, dict):
        value = value.get("name") or value.get("type")
    return str(value) if value else None


def item_from_dict(raw: dict) -> Item:
    """Build an :class:`Item` from a normalized raw dict.

    The full raw dict is kept in ``extra`` so readiness field checks and
    templates can reach source-specific fields.
    """
    labels = raw.get("labels") or []
    if isinstance(labels, dict):
        labels = labels.get("nodes") or []
    number = raw.get("number")

    return Item(
        id=str(raw["id"]),
        title=raw.get("title") or "",
        body=raw.get("body") or raw.get("description") or "",
        labels=[name for name in (_label_name(label) for label in labels) if name],
        state=_state(raw),
        created_at=parse_datetime(raw.get("created_at") or raw.get("createdAt")),
        updated_at=parse_datetime(raw.get("updated_at") or raw.get("updatedAt")),
        repository=_repository(raw),
        number=int(number) if isinstance(number, (int, str)) and str(number).isdigit() else None,
        identifier=raw.get("identifier"),
        author=_login(raw.get("user") or raw.get("author")),
        url=raw.get("html_url") or raw.get("url"),
        extra=dict(raw),
    )
