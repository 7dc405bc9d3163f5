from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class PropertyUpdateRequest(BaseModel):
    price: float
    version: int


class PropertyRecord(BaseModel):
    id: int
    price: float
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    region_origin: str
    version: int = Field(ge=1)
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "PropertyRecord":
        """Build a record from an asyncpg row (or any mapping with the same keys)."""
        return cls(
            id=row["id"],
            price=float(row["price"]),
            bedrooms=row["bedrooms"],
            bathrooms=row["bathrooms"],
            region_origin=row["region_origin"],
            version=row["version"],
            updated_at=row["updated_at"],
        )

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")


# The HTTP layer returns the stored record as-is
PropertyResponse = PropertyRecord


class ReplicationEvent(PropertyRecord):
    """Immutable snapshot of a record at the moment its local write committed."""

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_record(cls, record: PropertyRecord) -> "ReplicationEvent":
        return cls(**record.model_dump())

    @classmethod
    def decode(cls, raw: bytes) -> "ReplicationEvent":
        return cls.model_validate_json(raw)

    def encode(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    def to_record(self) -> PropertyRecord:
        return PropertyRecord(**self.model_dump())


class ReplicationLagResponse(BaseModel):
    lag_seconds: float
