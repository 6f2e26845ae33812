from compscan.engine.listing_filter import (
    dedupe_listings,
    is_junk_listing,
    normalize_title,
    sort_and_cap,
    usable_listings,
)
from compscan.engine.query_builder import build_queries, build_search_query
from compscan.engine.stats import compute_stats, median, percentile

__all__ = [
    "build_queries",
    "build_search_query",
    "compute_stats",
    "dedupe_listings",
    "is_junk_listing",
    "median",
    "normalize_title",
    "percentile",
    "sort_and_cap",
    "usable_listings",
]
