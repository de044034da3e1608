"""
Type Registry - the value kinds a variable may hold.

Each VariableType declares how to validate and parse raw values, the
default for a fresh variable, an optional size ceiling, and its storage
affinity. Types with LARGE_OBJECT affinity always live in the large-object
tier; AUTO types are placed by size.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from nodeflow.schemas.storage_item import MediaReference

MB = 1024 * 1024


class StorageAffinity(StrEnum):
    AUTO = "auto"
    LARGE_OBJECT = "large-object"


class ValueKind(StrEnum):
    """How a type's parsed values are shaped."""

    SCALAR = "scalar"
    STRUCTURED = "structured"
    TEXT = "text"
    BINARY = "binary"


@dataclass
class VariableType:
    """A registered variable type."""

    name: str
    label: str
    kind: ValueKind
    default_factory: Callable[[], Any]
    validator: Callable[[Any], bool]
    parser: Callable[[Any], Any]
    affinity: StorageAffinity = StorageAffinity.AUTO
    max_size: int | None = None
    supported_mimes: list[str] = field(default_factory=list)
    supported_formats: list[str] = field(default_factory=list)

    @property
    def is_large_object(self) -> bool:
        return self.affinity == StorageAffinity.LARGE_OBJECT

    def default(self) -> Any:
        return self.default_factory()


# ---------------------------------------------------------------------------
# Validators and parsers
# ---------------------------------------------------------------------------


def _is_string(value: Any) -> bool:
    return isinstance(value, str)


def _parse_string(value: Any) -> str:
    return str(value) if value else ""


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return True
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _parse_number(value: Any) -> int | float:
    if isinstance(value, int | float) and not isinstance(value, bool):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0


def _is_boolean(value: Any) -> bool:
    return isinstance(value, bool) or str(value).lower() in ("true", "false", "1", "0")


def _parse_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1")


def _is_object(value: Any) -> bool:
    if isinstance(value, dict):
        return True
    if not isinstance(value, str):
        return False
    try:
        return isinstance(json.loads(value), dict)
    except json.JSONDecodeError:
        return False


def _parse_object(value: Any) -> dict:
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _is_array(value: Any) -> bool:
    if isinstance(value, list | tuple):
        return True
    if not isinstance(value, str):
        return False
    try:
        return isinstance(json.loads(value), list)
    except json.JSONDecodeError:
        return False


def _parse_array(value: Any) -> list:
    if isinstance(value, list | tuple):
        return list(value)
    try:
        parsed = json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return []
    return parsed if isinstance(parsed, list) else []


def _is_media(value: Any) -> bool:
    return isinstance(value, bytes | bytearray | memoryview | str | MediaReference)


def _parse_media(value: Any) -> Any:
    if isinstance(value, bytearray | memoryview):
        return bytes(value)
    return value


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def _builtin_types() -> list[VariableType]:
    return [
        VariableType("string", "String", ValueKind.SCALAR, str, _is_string, _parse_string),
        VariableType("number", "Number", ValueKind.SCALAR, int, _is_number, _parse_number),
        VariableType("boolean", "Boolean", ValueKind.SCALAR, bool, _is_boolean, _parse_boolean),
        VariableType("object", "Object", ValueKind.STRUCTURED, dict, _is_object, _parse_object),
        VariableType("array", "Array", ValueKind.STRUCTURED, list, _is_array, _parse_array),
        VariableType(
            "image",
            "Image",
            ValueKind.BINARY,
            lambda: None,
            _is_media,
            _parse_media,
            affinity=StorageAffinity.LARGE_OBJECT,
            max_size=50 * MB,
            supported_mimes=[
                "image/jpeg",
                "image/png",
                "image/gif",
                "image/webp",
                "image/svg+xml",
                "image/bmp",
            ],
            supported_formats=["jpeg", "jpg", "png", "gif", "webp", "svg", "bmp"],
        ),
        VariableType(
            "audio",
            "Audio",
            ValueKind.BINARY,
            lambda: None,
            _is_media,
            _parse_media,
            affinity=StorageAffinity.LARGE_OBJECT,
            max_size=100 * MB,
            supported_mimes=[
                "audio/mpeg",
                "audio/wav",
                "audio/ogg",
                "audio/webm",
                "audio/mp4",
                "audio/aac",
            ],
            supported_formats=["mp3", "wav", "ogg", "webm", "m4a", "aac"],
        ),
        VariableType(
            "video",
            "Video",
            ValueKind.BINARY,
            lambda: None,
            _is_media,
            _parse_media,
            affinity=StorageAffinity.LARGE_OBJECT,
            max_size=500 * MB,
            supported_mimes=[
                "video/mp4",
                "video/webm",
                "video/ogg",
                "video/quicktime",
                "video/x-msvideo",
            ],
            supported_formats=["mp4", "webm", "ogg", "mov", "avi"],
        ),
        VariableType(
            "document",
            "Document",
            ValueKind.BINARY,
            lambda: None,
            _is_media,
            _parse_media,
            affinity=StorageAffinity.LARGE_OBJECT,
            max_size=20 * MB,
            supported_mimes=[
                "application/pdf",
                "application/msword",
                "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
                "text/plain",
            ],
            supported_formats=["pdf", "doc", "docx", "txt"],
        ),
        VariableType(
            "largeText",
            "Large text",
            ValueKind.TEXT,
            str,
            _is_string,
            _parse_string,
            affinity=StorageAffinity.LARGE_OBJECT,
            max_size=50 * MB,
        ),
    ]


class TypeRegistry:
    """
    Registry of variable types, pre-populated with the built-ins.

    Example:
        registry = TypeRegistry()
        registry.get("number").parser("3.5")   # 3.5
        registry.infer_type([1, 2])            # "array"
    """

    def __init__(self) -> None:
        self._types: dict[str, VariableType] = {}
        for var_type in _builtin_types():
            self.register(var_type)

    def register(self, var_type: VariableType) -> None:
        """Register (or replace) a type."""
        self._types[var_type.name] = var_type

    def get(self, name: str) -> VariableType | None:
        return self._types.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._types

    def names(self) -> list[str]:
        return list(self._types)

    def infer_type(self, value: Any) -> str:
        """Pick a type for a value that arrives without one (node outputs)."""
        if isinstance(value, bool):
            return "boolean"
        if isinstance(value, int | float):
            return "number"
        if isinstance(value, str):
            return "string"
        if isinstance(value, bytes | bytearray | memoryview):
            return self.detect_from_bytes(bytes(value))
        if isinstance(value, list | tuple):
            return "array"
        if isinstance(value, dict):
            return "object"
        return "string"

    def detect_from_mime(self, mime_type: str, extension: str = "") -> str:
        """Map a Content-Type (and optional extension) onto a type name."""
        mime = (mime_type or "").split(";")[0].strip().lower()
        ext = extension.lower().lstrip(".")

        if mime.startswith("image/"):
            return "image"
        if mime.startswith("audio/"):
            return "audio"
        if mime.startswith("video/"):
            return "video"
        if (
            any(word in mime for word in ("pdf", "word", "document", "spreadsheet", "presentation"))
            or ext in ("pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx")
        ):
            return "document"
        return "string"

    def detect_file_type(self, filename: str, mime_type: str = "") -> str:
        """Type of an uploaded file: by mime first, then extension, else document."""
        mime = (mime_type or "").lower()
        if mime:
            for var_type in self._types.values():
                if mime in var_type.supported_mimes:
                    return var_type.name

        extension = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
        if extension:
            for var_type in self._types.values():
                if extension in var_type.supported_formats:
                    return var_type.name

        return "document"

    def detect_from_bytes(self, data: bytes) -> str:
        """Sniff well-known magic numbers; unknown payloads are documents."""
        if data.startswith((b"\x89PNG", b"\xff\xd8\xff", b"GIF8", b"BM")):
            return "image"
        if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return "image"
        if data[:4] == b"RIFF" and data[8:12] == b"WAVE":
            return "audio"
        if data.startswith((b"ID3", b"OggS")):
            return "audio"
        if data[4:8] == b"ftyp":
            return "video"
        return "document"
