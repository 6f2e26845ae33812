"""
CompScan - Configuration & Constants

Every threshold, TTL, lookup table and endpoint lives here. No hardcoded
values in business logic: components accept overrides as arguments and fall
back to these settings.

Usage:
    from compscan.config import settings
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic_settings import BaseSettings


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class SearchApi(str, Enum):
    """Which eBay API backs the marketplace search."""
    FINDING = "finding"   # findCompletedItems, sold listings, App ID only
    BROWSE = "browse"     # item_summary/search, OAuth client credentials


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """
    Central configuration for CompScan.

    Loads from environment variables with fallback defaults.
    """

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # -----------------------------------------------------------------------
    # eBay credentials & endpoints
    # -----------------------------------------------------------------------
    EBAY_APP_ID: str = ""                   # eBay Developer App ID (Client ID)
    EBAY_CERT_ID: str = ""                  # eBay Developer Cert ID (Client Secret)
    EBAY_OAUTH_URL: str = "https://api.ebay.com/identity/v1/oauth2/token"
    EBAY_OAUTH_SCOPE: str = "https://api.ebay.com/oauth/api_scope"
    EBAY_BROWSE_URL: str = "https://api.ebay.com/buy/browse/v1"
    EBAY_FINDING_URL: str = "https://svcs.ebay.com/services/search/FindingService/v1"
    EBAY_GLOBAL_ID: str = "EBAY-US"
    EBAY_MARKETPLACE_ID: str = "EBAY_US"
    EBAY_USER_AGENT: str = "compscan/0.1"
    EBAY_HTTP_TIMEOUT_SECONDS: float = 15.0

    # -----------------------------------------------------------------------
    # Marketplace search
    # -----------------------------------------------------------------------
    EBAY_SEARCH_API: SearchApi = SearchApi.FINDING
    EBAY_CATEGORY_ID: str = "261328"        # Sports Trading Card Singles
    EBAY_RESULTS_PER_QUERY: int = 20        # smaller pages reduce 5xx odds
    EBAY_MAX_KEYWORDS_LENGTH: int = 120
    EBAY_SERVER_ERROR_RETRY_DELAY_SECONDS: float = 0.25
    EBAY_COOLDOWN_SECONDS: int = 600        # after a Finding API quota error
    TOKEN_EXPIRY_SKEW_SECONDS: int = 60     # refresh OAuth token this early

    # -----------------------------------------------------------------------
    # Rate limiter (1 call / 5 s keeps us well under the 5,000/day quota)
    # -----------------------------------------------------------------------
    EBAY_RATE_LIMIT_MAX_REQUESTS: int = 1
    EBAY_RATE_LIMIT_WINDOW_SECONDS: float = 5.0
    RATE_LIMIT_WAIT_BUFFER_SECONDS: float = 0.1

    # -----------------------------------------------------------------------
    # Result cache
    # -----------------------------------------------------------------------
    QUERY_CACHE_TTL_SECONDS: float = 300.0          # 5 minutes
    FINGERPRINT_TTL_SECONDS: float = 1800.0         # 30 minutes
    CACHE_SWEEP_INTERVAL_SECONDS: float = 600.0     # 10 minutes

    # -----------------------------------------------------------------------
    # Comparable aggregation
    # -----------------------------------------------------------------------
    SPARSITY_THRESHOLD: int = 5
    LISTING_CAP: int = 50
    PERCENTILE_MIN_SAMPLE: int = 10
    ENABLE_UNCATEGORIZED_FALLBACK: bool = True
    COMPS_TIMEOUT_SECONDS: float = 4.0
    JUNK_KEYWORDS: list[str] = [
        "lot", "bundle", "repack", "custom", "mystery", "stickers",
        "box", "hobby", "case", "blaster", "auction photo", "proxy",
        "reprint", "fake", "replica",
    ]

    # -----------------------------------------------------------------------
    # Currency normalization (static table, approximate, not live FX)
    # Value = units of REFERENCE_CURRENCY per 1 unit of the key currency.
    # -----------------------------------------------------------------------
    REFERENCE_CURRENCY: str = "USD"
    CURRENCY_TABLE_VERSION: str = "2025-01"
    CURRENCY_RATES: dict[str, Decimal] = {
        "USD": Decimal("1.00"),
        "CAD": Decimal("0.74"),
        "EUR": Decimal("1.08"),
        "GBP": Decimal("1.27"),
        "AUD": Decimal("0.66"),
    }

    # -----------------------------------------------------------------------
    # Brand inference: set-name keyword -> manufacturer.
    # Longest keyword wins, so "Topps Chrome" beats "Chrome".
    # -----------------------------------------------------------------------
    BRAND_TABLE_VERSION: str = "2025-01"
    BRAND_INFERENCE: dict[str, str] = {
        "topps": "Topps",
        "bowman": "Topps",
        "stadium club": "Topps",
        "finest": "Topps",
        "heritage": "Topps",
        "allen & ginter": "Topps",
        "gypsy queen": "Topps",
        "panini": "Panini",
        "prizm": "Panini",
        "select": "Panini",
        "optic": "Panini",
        "mosaic": "Panini",
        "donruss": "Panini",
        "contenders": "Panini",
        "national treasures": "Panini",
        "flawless": "Panini",
        "immaculate": "Panini",
        "spectra": "Panini",
        "chronicles": "Panini",
        "hoops": "Panini",
        "absolute": "Panini",
        "score": "Panini",
        "certified": "Panini",
        "upper deck": "Upper Deck",
        "sp authentic": "Upper Deck",
        "young guns": "Upper Deck",
        "o-pee-chee": "Upper Deck",
        "fleer": "Fleer",
        "leaf": "Leaf",
        "skybox": "SkyBox",
    }

    # -----------------------------------------------------------------------
    # Identity confidence weights (sum is capped at 100)
    # -----------------------------------------------------------------------
    CONFIDENCE_WEIGHTS: dict[str, int] = {
        "player": 40,
        "set_name": 20,
        "card_number": 20,
        "year": 10,
        "company": 5,
        "team": 5,
        "parallel": 5,
        "grade": 5,
    }

    # -----------------------------------------------------------------------
    # Optional LLM text-only normalization
    # -----------------------------------------------------------------------
    ENABLE_LLM_NORMALIZATION: bool = False
    ANTHROPIC_API_KEY: str = ""
    LLM_MODEL_ID: str = "claude-3-5-haiku-latest"
    LLM_MAX_TOKENS: int = 512
    LLM_TIMEOUT_SECONDS: float = 10.0

    # -----------------------------------------------------------------------
    # Logging
    # -----------------------------------------------------------------------
    LOG_LEVEL: str = "INFO"


# Singleton instance
settings = Settings()
