"""Variable naming rules and ``{{name.path}}`` template helpers."""

import json
import re
import time
from collections.abc import Iterable
from typing import Any

from nodeflow.errors import VariableError

_NAME_CHARS = "A-Za-z0-9_一-龥"
VARIABLE_NAME_PATTERN = re.compile(rf"^[A-Za-z_一-龥][{_NAME_CHARS}]*$")
_ILLEGAL_CHARS = re.compile(rf"[^{_NAME_CHARS}]")

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_PATH_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def validate_variable_name(name: str) -> str:
    """
    Return the trimmed name if it is a legal identifier.

    Legal: a letter, underscore or CJK ideograph, followed by letters,
    digits, underscores or CJK ideographs.

    Raises:
        VariableError: empty or malformed name
    """
    if not isinstance(name, str) or not name.strip():
        raise VariableError("Variable name cannot be empty")
    trimmed = name.strip()
    if not VARIABLE_NAME_PATTERN.match(trimmed):
        raise VariableError(
            f"Invalid variable name '{trimmed}': must start with a letter, underscore or CJK "
            "character and contain only letters, digits, underscores or CJK characters",
            name=trimmed,
        )
    return trimmed


def generate_valid_variable_name(
    base_name: str,
    existing: Iterable[str] = (),
    suffix: str = "",
) -> str:
    """
    Turn an arbitrary string (usually a file name) into a free, legal name.

    "my photo.png" → "my_photo", "2024 report" → "_2024_report"; a clash
    with ``existing`` appends "_1", "_2", ...
    """
    name = re.sub(r"\.[^.]*$", "", base_name or "")
    if not name.strip():
        name = "file"

    name = _ILLEGAL_CHARS.sub("_", name)
    name = re.sub(r"^[0-9]+", lambda m: "_" + m.group(0), name)
    name = re.sub(r"_+", "_", name)
    name = name.rstrip("_")

    if not name or not VARIABLE_NAME_PATTERN.match(name):
        name = f"file_{int(time.time() * 1000)}"

    name += suffix

    taken = set(existing)
    final_name = name
    counter = 1
    while final_name in taken:
        final_name = f"{name}_{counter}"
        counter += 1
    return final_name


def lookup_path(value: Any, path: str) -> tuple[bool, Any]:
    """
    Follow a dotted/indexed path (``a.b[0].c``) into nested dicts and lists.

    Returns:
        (found, value)
    """
    current = value
    for key, index in _PATH_TOKEN.findall(path):
        if index:
            position = int(index)
            if not isinstance(current, list | tuple) or position >= len(current):
                return False, None
            current = current[position]
        elif isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list | tuple) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return False, None
    return True, current


def template_references(text: str) -> list[str]:
    """Root variable names referenced by ``{{...}}`` placeholders, in order."""
    roots: list[str] = []
    for expression in TEMPLATE_PATTERN.findall(text or ""):
        match = _PATH_TOKEN.match(expression)
        if match and match.group(1) and match.group(1) not in roots:
            roots.append(match.group(1))
    return roots


def _stringify(value: Any) -> str:
    if isinstance(value, dict | list):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def render_template(text: str, values: dict[str, Any]) -> str:
    """
    Replace ``{{name.path}}`` placeholders using ``values``.

    Placeholders whose root is missing or whose path does not resolve are
    left untouched.
    """

    def _replace(match: re.Match) -> str:
        found, value = lookup_path(values, match.group(1))
        return _stringify(value) if found else match.group(0)

    return TEMPLATE_PATTERN.sub(_replace, text or "")
