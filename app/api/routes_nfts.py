from __future__ import annotations

import json
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select

from ..auth.dependencies import require_permission
from ..cache import response_cache
from ..database import db_session, utcnow
from ..models import NFT, User
from ..schemas import NFTCreate, NFTUpdate
from .common import cache_key, dump, nft_to_read, paginate, parse_id, search_clause

logger = logging.getLogger("ecosystem.nfts")

router = APIRouter(prefix="/nfts", tags=["nfts"])

CACHE_PREFIX = "nfts:"


def generate_token_id() -> str:
    return f"ECO-{secrets.token_hex(6).upper()}"


def fetch_nfts(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    rarity: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    with db_session() as session:
        stmt = select(NFT).order_by(NFT.created_at.desc(), NFT.id.desc())
        if status:
            stmt = stmt.where(NFT.status == status)
        if rarity:
            stmt = stmt.where(NFT.rarity == rarity)
        if search:
            stmt = stmt.where(search_clause(search, (NFT.name, NFT.description, NFT.token_id)))
        rows, pagination = paginate(session, stmt, page, limit)
        return {
            "nfts": dump([nft_to_read(r) for r in rows]),
            "pagination": pagination.model_dump(),
        }


@router.get("")
def list_nfts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, description="Filter by status (pending/minted/failed)"),
    rarity: Optional[str] = Query(None, description="Filter by rarity"),
    search: Optional[str] = Query(None, description="Search name, description and token id"),
) -> dict:
    key = cache_key("nfts", page=page, limit=limit, status=status, rarity=rarity, search=search)
    return response_cache.get_or_fetch(
        key, lambda: fetch_nfts(page, limit, status, rarity, search),
    )


@router.get("/{nft_id}")
def get_nft(nft_id: str) -> dict:
    nid = parse_id(nft_id, "NFT")
    with db_session() as session:
        row = session.get(NFT, nid)
        if not row:
            raise HTTPException(status_code=404, detail="NFT not found")
        return nft_to_read(row).model_dump(mode="json")


@router.post("", status_code=201)
def create_nft(
    body: NFTCreate,
    admin: User = Depends(require_permission("manage_nfts")),
) -> dict:
    data = body.model_dump(exclude={"metadata"})
    data["token_id"] = body.token_id or generate_token_id()
    data["mint_date"] = body.mint_date or utcnow().isoformat() + "Z"

    with db_session() as session:
        duplicate = session.execute(
            select(NFT.id).where(NFT.token_id == data["token_id"])
        ).first()
        if duplicate:
            raise HTTPException(status_code=409, detail="Token ID already exists")
        row = NFT(**data, metadata_json=json.dumps(body.metadata))
        session.add(row)
        session.flush()
        session.refresh(row)
        created = nft_to_read(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    logger.info("NFT %s created by %s", created.token_id, admin.email)
    return {"message": "NFT created successfully", "nft": created.model_dump(mode="json")}


@router.put("/{nft_id}")
def update_nft(
    nft_id: str,
    body: NFTUpdate,
    admin: User = Depends(require_permission("manage_nfts")),
) -> dict:
    nid = parse_id(nft_id, "NFT")
    with db_session() as session:
        row = session.get(NFT, nid)
        if not row:
            raise HTTPException(status_code=404, detail="NFT not found")
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        if "metadata" in changes:
            row.metadata_json = json.dumps(changes.pop("metadata"))
        for field, value in changes.items():
            setattr(row, field, value)
        row.updated_at = utcnow()
        session.flush()
        session.refresh(row)
        updated = nft_to_read(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    return {"message": "NFT updated successfully", "nft": updated.model_dump(mode="json")}


@router.delete("/{nft_id}")
def delete_nft(
    nft_id: str,
    admin: User = Depends(require_permission("manage_nfts")),
) -> dict:
    nid = parse_id(nft_id, "NFT")
    with db_session() as session:
        row = session.get(NFT, nid)
        if not row:
            raise HTTPException(status_code=404, detail="NFT not found")
        session.delete(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    return {"message": "NFT deleted successfully"}
