"""Deal ingestion and deal queries.

Ingestion upserts extracted deal candidates by ``(store_id, dedup_key)``
and appends a price history point whenever a deal's price changes.
"""

import uuid
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dealradar.core.exceptions import NotFoundError
from dealradar.crawlers.dedup import DedupKey, build_dedup_key
from dealradar.models.base import utcnow
from dealradar.models.deal import Deal
from dealradar.models.price_history import PriceHistory
from dealradar.models.store import Store
from dealradar.schemas.deal import DealCandidate, deal_candidates_adapter

logger = structlog.get_logger(__name__)

# Public listings only show deals with a meaningful discount
MIN_DISCOUNT = 4.99

CENT = Decimal("0.01")

DEAL_SORTS = ("newest", "biggest_drop", "price", "all")


def quantize_price(value: Decimal) -> Decimal:
    """Round to the stored precision so comparisons match what the DB holds."""
    return Decimal(value).quantize(CENT)


def compute_percent_off(price: Decimal, msrp: Optional[Decimal]) -> int:
    """Discount vs. MSRP in whole percent, halves rounded up.

    Missing or zero MSRP yields 0. A price above MSRP yields a negative value.
    """
    if msrp is None or msrp == 0:
        return 0
    ratio = (Decimal(1) - Decimal(price) / Decimal(msrp)) * 100
    return int((ratio + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


@dataclass
class IngestResult:
    success: bool = True
    created: int = 0
    updated: int = 0
    price_changes: int = 0


class DealService:
    """Service for ingesting and querying deals."""

    def __init__(self, db: AsyncSession):
        """Initialize deal service.

        Args:
            db: Async database session
        """
        self.db = db
        self.logger = logger.bind(service="deal_service")

    async def update_deals_for_store(
        self,
        store_id: UUID,
        deals: Sequence[Union[DealCandidate, Dict[str, Any]]],
        commit: bool = True,
    ) -> IngestResult:
        """Upsert a batch of extracted deals for one store.

        The whole batch is applied atomically: every candidate is validated
        and keyed before anything is written, so a malformed URL or an
        invalid candidate leaves the database untouched.

        For each candidate:
        - unseen dedup key: insert the deal and a first price history point
        - known dedup key: overwrite the deal's fields and append a price
          history point only if the price changed

        Candidates sharing a dedup key are applied in input order against the
        same row.

        Args:
            store_id: Store the deals belong to
            deals: Candidates (models or raw dicts from the extraction agent)
            commit: Commit at the end; callers that own the transaction pass False

        Returns:
            IngestResult with created/updated/price change counts

        Raises:
            NotFoundError: If the store does not exist
            UrlParseError: If a candidate URL cannot be canonicalised
            pydantic.ValidationError: If a raw candidate is invalid
        """
        store = await self.db.get(Store, store_id)
        if store is None:
            raise NotFoundError("Store", str(store_id))

        candidates = self._coerce_candidates(deals)
        keyed: List[Tuple[DealCandidate, DedupKey]] = [
            (candidate, build_dedup_key(candidate.url, candidate.title)) for candidate in candidates
        ]

        result = IngestResult()
        if not keyed:
            self.logger.info("deals_ingested", store_id=str(store_id), candidates=0)
            return result

        existing_by_key = await self._load_existing(store_id, {key.dedup_key for _, key in keyed})
        now = utcnow()

        try:
            for candidate, key in keyed:
                price = quantize_price(candidate.price)
                msrp = quantize_price(candidate.msrp) if candidate.msrp is not None else None
                percent_off = compute_percent_off(price, msrp)

                existing = existing_by_key.get(key.dedup_key)
                if existing is None:
                    deal = Deal(
                        id=uuid.uuid4(),
                        store_id=store_id,
                        title=candidate.title,
                        url=candidate.url,
                        canonical_url=key.canonical_url,
                        dedup_key=key.dedup_key,
                        image=candidate.image,
                        price=price,
                        currency=candidate.currency,
                        msrp=msrp,
                        percent_off=percent_off,
                    )
                    self.db.add(deal)
                    self.db.add(PriceHistory(deal_id=deal.id, price=price, at=now))
                    existing_by_key[key.dedup_key] = deal
                    result.created += 1
                    continue

                price_changed = quantize_price(existing.price) != price

                existing.title = candidate.title
                existing.url = candidate.url
                existing.canonical_url = key.canonical_url
                existing.image = candidate.image
                existing.price = price
                existing.currency = candidate.currency
                existing.msrp = msrp
                existing.percent_off = percent_off
                result.updated += 1

                if price_changed:
                    self.db.add(PriceHistory(deal_id=existing.id, price=price, at=now))
                    result.price_changes += 1

            if commit:
                await self.db.commit()
            else:
                await self.db.flush()
        except Exception:
            await self.db.rollback()
            raise

        self.logger.info(
            "deals_ingested",
            store_id=str(store_id),
            candidates=len(keyed),
            created=result.created,
            updated=result.updated,
            price_changes=result.price_changes,
        )
        return result

    @staticmethod
    def _coerce_candidates(
        deals: Sequence[Union[DealCandidate, Dict[str, Any]]],
    ) -> List[DealCandidate]:
        if all(isinstance(d, DealCandidate) for d in deals):
            return list(deals)
        return deal_candidates_adapter.validate_python(
            [d.model_dump() if isinstance(d, DealCandidate) else d for d in deals]
        )

    async def _load_existing(self, store_id: UUID, dedup_keys: set) -> Dict[str, Deal]:
        result = await self.db.execute(
            select(Deal).where(
                Deal.store_id == store_id,
                Deal.dedup_key.in_(dedup_keys),
            )
        )
        return {deal.dedup_key: deal for deal in result.scalars().all()}

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_deals(
        self,
        sort: str = "newest",
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Deal], int]:
        """Get paginated deals with a discount above MIN_DISCOUNT.

        Args:
            sort: "newest", "biggest_drop", "price" (cheapest first) or
                "all" (smallest qualifying discount first)
            page: Page number (1-indexed)
            limit: Results per page

        Returns:
            Tuple of (deals list, total count)
        """
        query = select(Deal).where(Deal.percent_off > MIN_DISCOUNT)
        count_query = select(func.count(Deal.id)).where(Deal.percent_off > MIN_DISCOUNT)

        sort_map = {
            "newest": (Deal.created_at.desc(), Deal.id.desc()),
            "biggest_drop": (Deal.percent_off.desc(), Deal.created_at.desc()),
            "price": (Deal.price.asc(), Deal.created_at.desc()),
            "all": (Deal.percent_off.asc(), Deal.created_at.asc()),
        }
        query = query.order_by(*sort_map.get(sort, sort_map["newest"]))

        offset = (page - 1) * limit
        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        deals = list(result.scalars().all())

        count_result = await self.db.execute(count_query)
        total = count_result.scalar() or 0

        return deals, total

    async def get_deal(self, deal_id: UUID) -> Optional[Deal]:
        """Get a deal with its store loaded, or None."""
        result = await self.db.execute(
            select(Deal).options(selectinload(Deal.store)).where(Deal.id == deal_id)
        )
        return result.scalar_one_or_none()

    async def get_deals_for_store(self, store_id: UUID) -> List[Deal]:
        result = await self.db.execute(
            select(Deal).where(Deal.store_id == store_id).order_by(Deal.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_price_history(self, deal_id: UUID) -> List[PriceHistory]:
        """Price history for a deal, oldest first.

        Raises:
            NotFoundError: If the deal does not exist
        """
        deal = await self.db.get(Deal, deal_id)
        if deal is None:
            raise NotFoundError("Deal", str(deal_id))

        result = await self.db.execute(
            select(PriceHistory)
            .where(PriceHistory.deal_id == deal_id)
            .order_by(PriceHistory.at.asc(), PriceHistory.id.asc())
        )
        return list(result.scalars().all())
