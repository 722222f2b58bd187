"""
routes_platform.py — Runtime config, edge-cacheable endpoints and cron hooks
===========================================================================
Everything here is public except the cache warm-up, which is guarded by
X-Cron-Secret when ECOSYSTEM_CRON_SECRET is set.
"""
from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select

from ..cache import response_cache
from ..config import settings
from ..database import db_session
from ..models import NFT
from ..telemetry.logger import log_analytics_event
from .common import MAX_ROW_ID, cache_key
from .routes_articles import fetch_articles
from .routes_nfts import fetch_nfts
from .routes_projects import fetch_projects

logger = logging.getLogger("ecosystem.platform")

router = APIRouter(tags=["platform"])

EDGE_CONFIG_CACHE = "public, max-age=3600, s-maxage=3600"
NFT_METADATA_CACHE = "public, max-age=86400, s-maxage=86400"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_config() -> Dict[str, Any]:
    """Feature flags derived from the configured feature key."""
    return {
        "environment": settings.environment,
        "features": {
            "advancedAnalytics": settings.feature_key == "advanced_features_enabled",
            "betaFeatures": settings.feature_key == "beta_access_granted",
        },
        "timestamp": _now_iso(),
    }


def _geo(request: Request, default_country: str = "US") -> Tuple[str, str]:
    country = request.headers.get("x-geo-country") or default_country
    region = request.headers.get("x-geo-region") or "Unknown"
    return country, region


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@router.get("/config")
def get_config() -> dict:
    return response_cache.get_or_fetch("config", build_config)


@router.get("/edge/config")
def get_edge_config(request: Request) -> JSONResponse:
    """Lightweight, CDN-cacheable config personalised by geo headers."""
    country, region = _geo(request)
    payload = {
        "environment": settings.environment,
        "region": region,
        "country": country,
        "features": {
            "advancedAnalytics": True,
            "betaFeatures": country == "US",
            "realTimeNotifications": True,
        },
        "cdn": {
            "imageOptimization": True,
            "staticAssetCaching": True,
        },
        "timestamp": _now_iso(),
    }
    return JSONResponse(
        payload,
        headers={"Cache-Control": EDGE_CONFIG_CACHE, "CDN-Cache-Control": "max-age=3600"},
    )


# ---------------------------------------------------------------------------
# NFT metadata (marketplace format)
# ---------------------------------------------------------------------------

@router.get("/edge/nfts/metadata")
def get_nft_metadata(id: Optional[str] = Query(None, description="NFT id or token id")) -> JSONResponse:
    if not id:
        raise HTTPException(status_code=400, detail="NFT ID is required")

    with db_session() as session:
        stmt = select(NFT).where(NFT.token_id == id)
        if id.isdigit() and int(id) <= MAX_ROW_ID:
            stmt = select(NFT).where((NFT.id == int(id)) | (NFT.token_id == id))
        row = session.execute(stmt.limit(1)).scalar_one_or_none()
        if row is None:
            raise HTTPException(status_code=404, detail="NFT not found")
        attributes: List[Dict[str, Any]] = [
            {"trait_type": "Category", "value": row.category},
            {"trait_type": "Rarity", "value": row.rarity},
        ]
        if row.project:
            attributes.append({"trait_type": "Project", "value": row.project})
        extra = json.loads(row.metadata_json or "{}")
        if isinstance(extra.get("attributes"), dict):
            for trait, value in extra["attributes"].items():
                attributes.append({"trait_type": trait, "value": value})
        metadata = {
            "id": row.token_id,
            "name": row.name,
            "description": row.description,
            "image": row.image,
            "attributes": attributes,
            "external_url": f"{settings.public_site_url.rstrip('/')}/nfts/{row.token_id}",
        }

    return JSONResponse(metadata, headers={"Cache-Control": NFT_METADATA_CACHE})


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

@router.post("/edge/analytics")
def post_analytics(request: Request, body: Dict[str, Any] = Body(...)) -> dict:
    country, region = _geo(request, default_country="Unknown")
    event = {
        **body,
        "timestamp": _now_iso(),
        "geo": {"country": country, "region": region},
        "userAgent": request.headers.get("user-agent"),
    }
    log_analytics_event(event)
    return {"success": True}


# ---------------------------------------------------------------------------
# Cron: cache warm-up
# ---------------------------------------------------------------------------

def warmup_targets() -> List[Tuple[str, str, Callable[[], Any]]]:
    """(endpoint, cache key, fetcher) for the most-hit listings."""
    return [
        ("/config", "config", build_config),
        ("/projects?limit=10", cache_key("projects", page=1, limit=10), lambda: fetch_projects(1, 10)),
        ("/nfts?limit=10", cache_key("nfts", page=1, limit=10), lambda: fetch_nfts(1, 10)),
        ("/articles?limit=5", cache_key("articles", page=1, limit=5), lambda: fetch_articles(1, 5)),
    ]


@router.get("/cron/cache-warmup")
def cache_warmup(x_cron_secret: Optional[str] = Header(None)) -> dict:
    if settings.cron_secret and not secrets.compare_digest(x_cron_secret or "", settings.cron_secret):
        raise HTTPException(status_code=401, detail="Invalid cron secret.")

    results = []
    for endpoint, key, fetcher in warmup_targets():
        try:
            response_cache.set(key, fetcher())
            results.append({"endpoint": endpoint, "success": True})
        except Exception as exc:
            logger.warning("Cache warm-up for %s failed: %s", endpoint, exc)
            results.append({"endpoint": endpoint, "success": False, "error": str(exc)})

    return {
        "success": all(r["success"] for r in results),
        "timestamp": _now_iso(),
        "results": results,
    }
