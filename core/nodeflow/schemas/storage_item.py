"""
Storage schemas - named variables and their stored values.

A StorageItem's value is a tagged union so every code path that reads or
writes a tier dispatches on ``kind`` instead of sniffing Python types:

    scalar      inline str / number / bool
    structured  inline dict / list
    text_blob   pointer to a row in the large-object ``items`` table
    media_ref   pointer to a row in the large-object ``media`` table
"""

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

NO_OUTPUT = "__NO_OUTPUT__"
NO_INPUT = "__NO_INPUT__"


class StorageTier(StrEnum):
    """The three storage tiers."""

    EPHEMERAL_FAST = "ephemeral-fast"
    DURABLE_SMALL = "durable-small"
    DURABLE_LARGE = "durable-large"


class TierVariant(StrEnum):
    """Which durable-small backend holds the record."""

    SESSION = "session"  # 1 KiB < size <= 1 MiB
    PERSISTENT = "persistent"  # size <= 1 KiB


class PopupConfig(BaseModel):
    """Whether reads/writes of a variable pause at the interaction gate."""

    input_popup: bool = False
    output_popup: bool = False
    timeout_ms: int = 20000


class MediaReference(BaseModel):
    """Small pointer stored in place of a binary payload."""

    media_id: str
    original_name: str
    mime_type: str = "application/octet-stream"
    size: int = 0


class ScalarValue(BaseModel):
    kind: Literal["scalar"] = "scalar"
    value: str | bool | int | float | None = None


class StructuredValue(BaseModel):
    kind: Literal["structured"] = "structured"
    value: dict[str, Any] | list[Any] = Field(default_factory=dict)


class TextBlobValue(BaseModel):
    """Out-of-line text (or JSON-encoded structure) in the large-object tier."""

    kind: Literal["text_blob"] = "text_blob"
    key: str
    encoding: Literal["text", "json"] = "text"
    compressed: bool = False
    length: int = 0


class MediaRefValue(BaseModel):
    kind: Literal["media_ref"] = "media_ref"
    reference: MediaReference


StoredValue = Annotated[
    ScalarValue | StructuredValue | TextBlobValue | MediaRefValue,
    Field(discriminator="kind"),
]


class StorageItem(BaseModel):
    """
    A named, typed variable in the shared namespace.

    ``type`` never changes after creation; ``tier``/``variant`` are
    recomputed from (type affinity, size) on every write.
    """

    name: str
    type: str
    size: int = 0
    tier: StorageTier = StorageTier.DURABLE_SMALL
    variant: TierVariant | None = TierVariant.PERSISTENT
    value: StoredValue = Field(default_factory=ScalarValue)
    description: str = ""
    popup_config: PopupConfig = Field(default_factory=PopupConfig)
    created: datetime = Field(default_factory=datetime.now)
    updated: datetime = Field(default_factory=datetime.now)
    readonly: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "allow"}

    @property
    def is_reference(self) -> bool:
        return self.value.kind in ("text_blob", "media_ref")

    @property
    def media_reference(self) -> MediaReference | None:
        if isinstance(self.value, MediaRefValue):
            return self.value.reference
        return None


class HistoryEntry(BaseModel):
    """A previous value of a variable."""

    value: Any = None
    timestamp: datetime = Field(default_factory=datetime.now)


class VariableBinding(BaseModel):
    """
    Per-node mapping between node ports and named variables.

    ``output_mappings`` values may be NO_OUTPUT to drop an output;
    ``input_mappings`` values may be NO_INPUT to read from connections only.
    """

    node_id: str
    input_mappings: dict[str, str] = Field(default_factory=dict)
    output_mappings: dict[str, str] = Field(default_factory=dict)
    output_parse: dict[str, dict[str, Any]] = Field(default_factory=dict)
    updated: datetime = Field(default_factory=datetime.now)

    def input_variable(self, input_name: str) -> str | None:
        name = self.input_mappings.get(input_name)
        if not name or name == NO_INPUT:
            return None
        return name

    def output_variable(self, output_name: str) -> str | None:
        name = self.output_mappings.get(output_name)
        if not name or name == NO_OUTPUT:
            return None
        return name
