"""Deal model: one live deal per store per dedup key."""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealradar.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from dealradar.models.price_history import PriceHistory
    from dealradar.models.store import Store


class Deal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A product deal extracted from a store page.

    Created on the first sighting of a dedup key for a store and overwritten
    in place on every later sighting. Deals are never deleted by ingestion.
    """

    __tablename__ = "deals"

    store_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), nullable=False, comment="URL as extracted")
    canonical_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    dedup_key: Mapped[str] = mapped_column(String(64), nullable=False, comment="sha256 of canonical url + title")
    image: Mapped[Optional[str]] = mapped_column(String(2000), nullable=True)

    # Pricing
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    msrp: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True, comment="Original/list price")
    percent_off: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="round((1 - price/msrp) * 100), negative when price > msrp",
    )

    __table_args__ = (
        UniqueConstraint("dedup_key", "store_id", name="uq_deals_dedup_key_store"),
        Index("idx_deals_percent_off", "percent_off"),
        Index("idx_deals_price", "price"),
    )

    # Relationships
    store: Mapped["Store"] = relationship(back_populates="deals")
    price_history: Mapped[list["PriceHistory"]] = relationship(
        back_populates="deal", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Deal(id={self.id}, title='{self.title[:50]}', price={self.price}, percent_off={self.percent_off})>"
