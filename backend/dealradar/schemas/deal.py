"""Deal Pydantic schemas: extraction candidates and API responses."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

_HTTP_URL_PATTERN = r"^https?://.+"


class DealCandidate(BaseModel):
    """One deal as returned by the extraction agent.

    This is also the JSON schema handed to the agent, so field descriptions
    double as extraction instructions.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="The title or name of the product/deal",
    )
    url: str = Field(
        ...,
        pattern=_HTTP_URL_PATTERN,
        description="The full URL of the deal page",
    )
    image: Optional[str] = Field(
        None,
        pattern=_HTTP_URL_PATTERN,
        description="The main product image URL",
    )
    price: Decimal = Field(
        ...,
        ge=0,
        description="The current price of the item",
    )
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="The currency code (e.g., USD, EUR)",
    )
    msrp: Optional[Decimal] = Field(
        None,
        ge=0,
        description="The original/MSRP price before discount",
    )


deal_candidates_adapter = TypeAdapter(List[DealCandidate])


class StoreSummary(BaseModel):
    """Brief store information embedded in deal responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    url: str


class DealResponse(BaseModel):
    """Standard deal response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    store_id: UUID
    title: str
    url: str
    canonical_url: str
    image: Optional[str] = None
    price: Decimal
    currency: str
    msrp: Optional[Decimal] = None
    percent_off: int
    created_at: datetime
    updated_at: datetime


class DealDetailResponse(BaseModel):
    """Deal plus the store it belongs to (absent if the store is gone)."""

    deal: DealResponse
    store: Optional[StoreSummary] = None


class PriceHistoryPoint(BaseModel):
    """Single price history data point."""

    model_config = ConfigDict(from_attributes=True)

    price: Decimal
    at: datetime
