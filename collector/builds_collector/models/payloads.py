"""Tagged, versioned build payloads.

Builds keep the upstream gear / stats / talent data untouched inside an
envelope ``{"kind": ..., "schema_version": ..., "data": ...}``. The envelope is
written at extraction time without inspecting ``data``; decoding into the
models below happens only when an aggregator needs the entries.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..errors import PayloadError

CURRENT_SCHEMA_VERSION = 1
SUPPORTED_SCHEMA_VERSIONS = frozenset({1})

SECONDARY_STATS = ("Crit", "Haste", "Mastery", "Versatility")
MINOR_STATS = ("Leech", "Avoidance", "Speed")


class Gem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = 0
    icon: str | None = None
    item_level: float = Field(0.0, alias="itemLevel")


class GearItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = 0
    slot: int = 0
    name: str | None = None
    icon: str | None = None
    quality: int | None = None
    item_level: float = Field(0.0, alias="itemLevel")
    set_id: int | None = Field(None, alias="setID")
    bonus_ids: list[int] = Field(default_factory=list, alias="bonusIDs")
    gems: list[Gem] = Field(default_factory=list)
    permanent_enchant: int | None = Field(None, alias="permanentEnchant")
    permanent_enchant_name: str | None = Field(None, alias="permanentEnchantName")
    temporary_enchant: int | None = Field(None, alias="temporaryEnchant")
    temporary_enchant_name: str | None = Field(None, alias="temporaryEnchantName")

    @property
    def is_empty(self) -> bool:
        return self.id == 0


class StatRange(BaseModel):
    min: float = 0.0
    max: float = 0.0

    @property
    def value(self) -> float:
        return (self.min + self.max) / 2


class GearPayload(BaseModel):
    kind: Literal["gear"] = "gear"
    schema_version: int = CURRENT_SCHEMA_VERSION
    data: list[GearItem] = Field(default_factory=list)


class StatsPayload(BaseModel):
    kind: Literal["stats"] = "stats"
    schema_version: int = CURRENT_SCHEMA_VERSION
    data: dict[str, StatRange] = Field(default_factory=dict)

    def category_of(self, name: str) -> str | None:
        if name in SECONDARY_STATS:
            return "secondary"
        if name in MINOR_STATS:
            return "minor"
        return None


class TalentsPayload(BaseModel):
    kind: Literal["talents"] = "talents"
    schema_version: int = CURRENT_SCHEMA_VERSION
    import_code: str | None = None
    data: list[dict[str, Any]] = Field(default_factory=list)


BuildPayload = Annotated[
    Union[GearPayload, StatsPayload, TalentsPayload],
    Field(discriminator="kind"),
]
_payload_adapter: TypeAdapter[BuildPayload] = TypeAdapter(BuildPayload)


def envelope(kind: str, data: Any, **extra: Any) -> dict[str, Any]:
    """Wrap raw upstream data without validating it."""
    return {"kind": kind, "schema_version": CURRENT_SCHEMA_VERSION, "data": data, **extra}


def decode_payload(raw: Any) -> GearPayload | StatsPayload | TalentsPayload:
    """Decode an envelope into its variant model.

    Raises:
        PayloadError: On unknown kinds, unsupported versions or malformed data
    """
    if not isinstance(raw, dict):
        raise PayloadError(f"Build payload must be an object, got {type(raw).__name__}")
    version = raw.get("schema_version")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise PayloadError(f"Unsupported payload schema version: {version!r}")
    try:
        return _payload_adapter.validate_python(raw)
    except ValidationError as exc:
        raise PayloadError(f"Malformed {raw.get('kind')!r} payload: {exc.error_count()} errors") from exc


def decode_gear(raw: Any) -> GearPayload:
    payload = decode_payload(raw)
    if not isinstance(payload, GearPayload):
        raise PayloadError(f"Expected gear payload, got {payload.kind!r}")
    return payload


def decode_stats(raw: Any) -> StatsPayload:
    payload = decode_payload(raw)
    if not isinstance(payload, StatsPayload):
        raise PayloadError(f"Expected stats payload, got {payload.kind!r}")
    return payload


def decode_talents(raw: Any) -> TalentsPayload:
    payload = decode_payload(raw)
    if not isinstance(payload, TalentsPayload):
        raise PayloadError(f"Expected talents payload, got {payload.kind!r}")
    return payload
