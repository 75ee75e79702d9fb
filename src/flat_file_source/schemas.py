# src/flat_file_source/schemas.py

import re
from datetime import datetime, timezone
from urllib.parse import quote

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticSerializationError

from .exceptions import InvalidOverridesError, PayloadEncodingError

EVENT_TYPE = "s3-flat-file-source"
EVENT_SOURCE = "https://github.com/itsmurugappan/s3-flat-file-source"
CONTENT_TYPE = "application/json"

# CloudEvents attribute names: lower-case ASCII letters and digits only.
_EXTENSION_NAME = re.compile(r"^[a-z0-9]{1,20}$")
_RESERVED_ATTRIBUTES = frozenset(
    {"specversion", "id", "source", "type", "time", "datacontenttype", "data"}
)

# Header values keep printable ASCII except space, double quote and percent;
# everything else is percent-encoded from its UTF-8 bytes.
_HEADER_SAFE = "".join(chr(c) for c in range(0x21, 0x7F) if chr(c) not in "\"%")


def encode_header_value(value: str) -> str:
    return quote(value, safe=_HEADER_SAFE)


class CloudEventOverrides(BaseModel):
    """
    Static extension attributes applied to every outbound event.

    Parsed from the JSON document in ``K_CE_OVERRIDES``, e.g.
    ``{"extensions": {"team": "ingest"}}``.
    """

    extensions: dict[str, str] = Field(default_factory=dict)

    @field_validator("extensions")
    @classmethod
    def validate_extension_names(cls, value: dict[str, str]) -> dict[str, str]:
        for name in value:
            if not _EXTENSION_NAME.match(name):
                raise ValueError(
                    f"extension name '{name}' must be 1-20 lower-case letters or digits"
                )
            if name in _RESERVED_ATTRIBUTES:
                raise ValueError(f"extension name '{name}' is a reserved attribute")
        return value

    @classmethod
    def from_json(cls, raw: str) -> "CloudEventOverrides":
        try:
            return cls.model_validate_json(raw)
        except pydantic.ValidationError as e:
            raise InvalidOverridesError(raw, str(e)) from e


class FlatFileData(BaseModel):
    """The shape of the data carried by each event."""

    model_config = ConfigDict(populate_by_name=True)

    data: str = Field(..., alias="Data")


class CloudEvent(BaseModel):
    """
    A CloudEvents 1.0 envelope wrapping one batch of lines.
    """

    specversion: str = "1.0"
    id: str
    source: str = EVENT_SOURCE
    type: str = EVENT_TYPE
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    datacontenttype: str = CONTENT_TYPE
    extensions: dict[str, str] = Field(default_factory=dict)
    data: FlatFileData

    @classmethod
    def for_batch(
        cls,
        event_id: int,
        payload: str,
        overrides: CloudEventOverrides | None = None,
    ) -> "CloudEvent":
        """Builds the envelope for one batch, raising PayloadEncodingError if it cannot."""
        try:
            return cls(
                id=str(event_id),
                extensions=dict(overrides.extensions) if overrides else {},
                data=FlatFileData(data=payload),
            )
        except pydantic.ValidationError as e:
            raise PayloadEncodingError(str(event_id), str(e)) from e

    def body(self) -> bytes:
        """Serializes the data attribute as the JSON request body."""
        try:
            return self.data.model_dump_json(by_alias=True).encode("utf-8")
        except (PydanticSerializationError, UnicodeEncodeError) as e:
            raise PayloadEncodingError(self.id, str(e)) from e

    def binary_headers(self) -> dict[str, str]:
        """HTTP headers for binary content mode."""
        headers = {
            "ce-specversion": self.specversion,
            "ce-id": self.id,
            "ce-source": self.source,
            "ce-type": self.type,
            "ce-time": self.time.isoformat().replace("+00:00", "Z"),
            "Content-Type": self.datacontenttype,
        }
        for name, value in self.extensions.items():
            headers[f"ce-{name}"] = encode_header_value(value)
        return headers
