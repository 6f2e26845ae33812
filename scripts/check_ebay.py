"""
CompScan - eBay Credential Diagnostics

Reports whether eBay credentials are configured and look sane (previews only,
never the full secret), and optionally fetches a live OAuth token.

Usage:
    python scripts/check_ebay.py
    python scripts/check_ebay.py --fetch-token
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import httpx

from compscan.config import settings
from compscan.errors import CompScanError
from compscan.pipeline.auth import OAuthTokenCache, token_preview


def _clean(value: str) -> str:
    return value.lstrip("\ufeff").strip()


def _has_non_ascii(value: str) -> bool:
    return any(ord(ch) > 0x7F for ch in value)


def credential_report() -> dict[str, object]:
    """Presence, previews and common copy/paste mistakes for the eBay keys."""
    app_id = _clean(settings.EBAY_APP_ID)
    cert_id = _clean(settings.EBAY_CERT_ID)
    return {
        "ok": bool(app_id) and bool(cert_id),
        "app_id_preview": token_preview(app_id) or None,
        "cert_id_length": len(cert_id),
        "app_id_has_non_ascii": _has_non_ascii(app_id),
        "cert_id_has_non_ascii": _has_non_ascii(cert_id),
        "app_id_is_production": "-PRD-" in app_id,
        "app_id_has_padding": app_id != settings.EBAY_APP_ID,
        "search_api": settings.EBAY_SEARCH_API.value,
        "marketplace": settings.EBAY_MARKETPLACE_ID,
        "category_id": settings.EBAY_CATEGORY_ID or None,
    }


async def fetch_token_report() -> dict[str, object]:
    tokens = OAuthTokenCache()
    async with httpx.AsyncClient(timeout=settings.EBAY_HTTP_TIMEOUT_SECONDS) as client:
        try:
            token = await tokens.get_token(client)
        except CompScanError as e:
            return {"ok": False, "error": str(e)}
    return {"ok": True, "token_preview": token_preview(token)}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check eBay credential configuration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/check_ebay.py
  python scripts/check_ebay.py --fetch-token
""",
    )
    parser.add_argument(
        "--fetch-token",
        action="store_true",
        help="Also request a live OAuth application token (Browse API credentials).",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    report: dict[str, object] = {"credentials": credential_report()}
    if args.fetch_token:
        report["token"] = await fetch_token_report()
    print(json.dumps(report, indent=2))

    if not report["credentials"]["ok"]:  # type: ignore[index]
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
