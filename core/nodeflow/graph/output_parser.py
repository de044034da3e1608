"""
Output parsing - extract the part of a node output a variable should hold.

Configured per output on a VariableBinding:

    {"mode": "delimiter", "config": "<answer>|</answer>"}
    {"mode": "field",     "config": "title"}
    {"mode": "regex",     "config": "score: (\\d+)"}
    {"mode": "sequence",  "config": "2"}

Parsing never fails a run: anything that cannot be extracted returns the
original value.
"""

import json
import logging
import re
from typing import Any

from nodeflow.storage.variables import lookup_path

logger = logging.getLogger(__name__)


def _parse_delimiter(text: str, config: str) -> Any:
    parts = config.split("|")
    if len(parts) != 2:
        return None
    start_delim, end_delim = parts
    start = text.find(start_delim)
    end = text.rfind(end_delim)
    if start != -1 and end != -1 and end > start:
        return text[start + len(start_delim) : end]
    return None


def _parse_field(value: Any, text: str, config: str) -> Any:
    if isinstance(value, dict):
        found, result = lookup_path(value, config)
        return result if found else None

    match = re.search(rf'"{re.escape(config)}"\s*:\s*"([^"]*)"', text, re.IGNORECASE)
    if match:
        return match.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict):
        found, result = lookup_path(data, config)
        return result if found else None
    return None


def _parse_regex(text: str, config: str) -> Any:
    matches = []
    for match in re.finditer(config, text):
        captured = match.group(1) if match.groups() else None
        matches.append(match.group(0) if captured is None else captured)
    if not matches:
        return None
    return matches[0] if len(matches) == 1 else matches


def _parse_sequence(text: str, config: str) -> Any:
    index = int(config) - 1
    lines = [line for line in text.split("\n") if line.strip()]
    if 0 <= index < len(lines):
        return lines[index]
    return None


def parse_output_value(value: Any, parse_config: dict[str, Any] | None) -> Any:
    """
    Apply a parse configuration to a node output.

    Returns:
        The extracted value, or ``value`` unchanged when the mode is unknown,
        the pattern does not match, or the configuration is malformed
    """
    if not parse_config:
        return value
    mode = parse_config.get("mode")
    config = str(parse_config.get("config", ""))
    text = value if isinstance(value, str) else str(value)

    try:
        if mode == "delimiter":
            result = _parse_delimiter(text, config)
        elif mode == "field":
            result = _parse_field(value, text, config)
        elif mode == "regex":
            result = _parse_regex(text, config)
        elif mode == "sequence":
            result = _parse_sequence(text, config)
        else:
            return value
    except (re.error, ValueError) as e:
        logger.warning(f"⚠ Output parsing failed ({mode}): {e}")
        return value

    return value if result is None else result
