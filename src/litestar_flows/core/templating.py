"""Placeholder substitution for message text and webhook payloads.

Supported placeholders, all case-insensitive:

- ``{{name}}`` / ``{{nome}}``: contact name
- ``{{first_name}}`` / ``{{primeiro_nome}}``: first word of the contact name
- ``{{phone}}`` / ``{{telefone}}``: contact phone number
- ``{{email}}``: contact email
- ``{{vars.<key>}}``: a flow variable, dotted paths allowed
- ``{{<key>}}``: a contact custom field

Unknown placeholders are left untouched.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from litestar_flows.core.models import Contact

__all__ = ("lookup_path", "render", "render_value")

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

_CONTACT_ALIASES = {
    "name": "name",
    "nome": "name",
    "first_name": "first_name",
    "primeiro_nome": "first_name",
    "phone": "phone_number",
    "telefone": "phone_number",
    "phone_number": "phone_number",
    "email": "email",
}


def lookup_path(data: Any, path: str) -> Any:
    """Resolve a dotted path in nested mappings and sequences.

    Args:
        data: The root object.
        path: Path such as ``customer.addresses.0.city``.

    Returns:
        The value, or ``None`` when any segment is missing.
    """
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _resolve(key: str, contact: Contact | None, variables: Mapping[str, Any]) -> Any:
    lowered = key.lower()
    if lowered.startswith("vars."):
        return lookup_path(dict(variables), key[5:])
    if contact is None:
        return None
    attribute = _CONTACT_ALIASES.get(lowered)
    if attribute is not None:
        return getattr(contact, attribute)
    for field_name, value in contact.custom_fields.items():
        if field_name.lower() == lowered:
            return value
    return None


def render(text: str, contact: Contact | None, variables: Mapping[str, Any] | None = None) -> str:
    """Substitute placeholders in a string.

    Args:
        text: Template text.
        contact: The contact providing name, phone and custom fields.
        variables: Flow variables reachable through ``{{vars.<key>}}``.

    Returns:
        The rendered text.

    Example:
        >>> render("Hi {{first_name}}!", contact)
        'Hi Maria!'
    """
    variables = variables or {}

    def substitute(match: re.Match[str]) -> str:
        value = _resolve(match.group(1), contact, variables)
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(substitute, text)


def render_value(value: Any, contact: Contact | None, variables: Mapping[str, Any] | None = None) -> Any:
    """Recursively render every string inside dicts and lists."""
    if isinstance(value, str):
        return render(value, contact, variables)
    if isinstance(value, dict):
        return {key: render_value(item, contact, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, contact, variables) for item in value]
    return value
