from __future__ import annotations

import logging
import sys

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pythonjsonlogger import jsonlogger
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .database import init_db
from .rate_limit import limiter
from .api import routes_admin, routes_articles, routes_nfts, routes_platform, routes_projects, routes_users
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)

_configure_logging()

# Initialise database tables on startup
init_db()

# Seed default super admin if it does not exist yet
seed_admin()

app = FastAPI(
    title="Ecosystem 4.0 API",
    version="1.0.0",
    description=(
        "Backend for the Ecosystem 4.0 environmental platform: projects, "
        "impact NFTs and articles, with role-based admin access, session "
        "tracking, login lockout and optional two-factor authentication."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(routes_projects.router)
app.include_router(routes_articles.router)
app.include_router(routes_nfts.router)
app.include_router(routes_users.router)
app.include_router(routes_admin.router)
app.include_router(routes_platform.router)


@app.get("/", tags=["meta"])
def root() -> dict:
    return {"status": "ok", "service": "ecosystem-api", "version": "1.0.0"}


@app.get("/health", tags=["meta"])
@limiter.exempt
def health() -> dict:
    return {"status": "healthy"}
