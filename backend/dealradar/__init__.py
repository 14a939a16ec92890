"""Deal Radar: periodic store crawling, deal deduplication and price tracking."""

__version__ = "0.1.0"
