# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for mcplab."""

from __future__ import annotations

from typing import ClassVar, Union

from pydantic import BaseModel, ConfigDict, JsonValue
from typing_extensions import TypeAlias

JSONPrimitive: TypeAlias = Union[str, int, float, bool, None]
JSONValue: TypeAlias = JsonValue
JSONObject: TypeAlias = dict[str, JSONValue]


def to_camel(name: str) -> str:
    """Convert a snake_case field name to its camelCase document key."""
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class LabBaseModel(BaseModel):
    """Base model with shared config for mcplab schemas.

    Fields are snake_case in Python and camelCase on disk.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_document(self) -> dict[str, JSONValue]:
        """Dump to a JSON-compatible dict keyed by camelCase aliases."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExtraAllowModel(BaseModel):
    """Base model that preserves extra fields for flexible schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="allow",
        populate_by_name=True,
    )
