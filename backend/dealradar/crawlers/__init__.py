"""Crawl pipeline: URL dedup, admission control, extraction agent, robots and workflow."""
