from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.core.errors import InvalidItemData

RAW_PREFIX = "RAW"


class CoilMetadata(BaseModel):
    """Raw-material coils. Always stored at ground level."""

    kind: Literal["coil"] = "coil"
    coil_number: int = Field(..., gt=0)
    coil_length_ft: float = Field(..., gt=0)


class StandardMetadata(BaseModel):
    kind: Literal["standard"] = "standard"
    quantity: int | None = Field(default=None, gt=0)


ItemMetadata = Annotated[Union[CoilMetadata, StandardMetadata], Field(discriminator="kind")]

_adapter: TypeAdapter = TypeAdapter(ItemMetadata)


def parse_metadata(data: dict | None, *, category_prefix: str = "") -> CoilMetadata | StandardMetadata:
    """Validate raw metadata against the variant the category requires."""
    payload = dict(data or {})
    if category_prefix.upper() == RAW_PREFIX:
        payload.setdefault("kind", "coil")
        if payload["kind"] != "coil":
            raise InvalidItemData("RAW categories require coil metadata", kind=payload["kind"])
    else:
        payload.setdefault("kind", "standard")
    try:
        return _adapter.validate_python(payload)
    except ValidationError as exc:
        raise InvalidItemData("Invalid item metadata", errors=exc.errors(include_url=False, include_context=False)) from exc


def load_metadata(meta: dict | None) -> CoilMetadata | StandardMetadata:
    # rows written before metadata had a kind default to standard
    payload = dict(meta or {})
    payload.setdefault("kind", "standard")
    return _adapter.validate_python(payload)


def requires_ground_level(metadata: CoilMetadata | StandardMetadata, *, category_ground_required: bool = False) -> bool:
    if category_ground_required:
        return True
    return isinstance(metadata, CoilMetadata)
