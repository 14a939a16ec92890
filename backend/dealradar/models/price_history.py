"""Price history tracking for deals."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealradar.models.base import Base, UUIDPrimaryKeyMixin, UTCDateTime, utcnow

if TYPE_CHECKING:
    from dealradar.models.deal import Deal


class PriceHistory(UUIDPrimaryKeyMixin, Base):
    """Append-only price trail of a deal.

    A row is written when a deal is first inserted and whenever an upsert
    changes its price. Unchanged prices write nothing.
    """

    __tablename__ = "price_history"

    deal_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("deals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="Price at this point in time")
    at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_price_history_deal_at", "deal_id", "at"),
    )

    # Relationships
    deal: Mapped["Deal"] = relationship(back_populates="price_history")

    def __repr__(self) -> str:
        return f"<PriceHistory(id={self.id}, deal_id={self.deal_id}, price={self.price}, at={self.at})>"
