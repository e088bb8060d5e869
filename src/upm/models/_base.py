"""Base model shared by every upm data model.

Every model inherits from :class:`UpmBaseModel` which provides:

* ``alias_generator=to_camel`` so report files and dependency service
  payloads use camelCase keys (``taskId``) while Python code uses
  snake_case fields.
* ``populate_by_name=True`` so both spellings validate.
* :meth:`UpmBaseModel.to_json_dict` for the JSON-safe, aliased dump used
  by report files and HTTP bodies.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(UTC)


class UpmBaseModel(BaseModel):
    """Frozen, camelCase-aliased base model."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump to JSON-compatible primitives using camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class MutableUpmModel(UpmBaseModel):
    """Variant for run-state that is filled in while work progresses."""

    model_config = ConfigDict(
        frozen=False,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
        validate_assignment=True,
    )
