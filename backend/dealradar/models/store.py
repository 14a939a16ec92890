"""Store model representing a crawl target."""

from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dealradar.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, UTCDateTime

if TYPE_CHECKING:
    from dealradar.models.crawl_job import CrawlJob
    from dealradar.models.deal import Deal


class Store(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A configured store URL that is crawled periodically for deals.

    ``is_crawling`` is the single authoritative busy flag: the scheduler and
    manual triggers set it, the crawl workflow clears it when it finishes.
    ``last_crawl_at`` only moves forward on a successful crawl.
    """

    __tablename__ = "stores"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    url: Mapped[str] = mapped_column(String(2000), nullable=False, comment="Page handed to the extraction agent")

    # Crawl state
    last_crawl_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(),
        nullable=True,
        comment="When the last successful crawl finished",
    )
    is_crawling: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Busy flag, true while a crawl job owns this store",
    )

    # Advisory only, formatted as "Allow: /x" / "Disallow: /y" lines
    robots_rules: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    crawl_jobs: Mapped[list["CrawlJob"]] = relationship(back_populates="store", cascade="all, delete-orphan")
    deals: Mapped[list["Deal"]] = relationship(back_populates="store", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Store(id={self.id}, name='{self.name}', is_crawling={self.is_crawling})>"
