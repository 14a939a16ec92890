"""Database utility functions."""

from dealradar.db.session import engine
from dealradar.models.base import Base


async def create_tables() -> None:
    """Create all tables registered on Base.metadata (no-op for existing ones)."""
    # Import models so they register with Base.metadata
    import dealradar.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
