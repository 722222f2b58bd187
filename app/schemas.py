from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ProjectCategory = Literal["reforestation", "cleanup", "conservation", "education"]
ProjectStatus = Literal["active", "paused", "completing", "completed"]
ArticleCategory = Literal["news", "education", "research", "community"]
NFTCategory = Literal["tree", "cleanup", "wildlife", "energy"]
NFTRarity = Literal["Common", "Uncommon", "Rare", "Epic", "Legendary"]
NFTStatus = Literal["pending", "minted", "failed"]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    category: ProjectCategory
    location: str = Field(..., min_length=2, max_length=100)
    status: ProjectStatus = "active"
    progress: float = Field(default=0, ge=0, le=100)
    target: float = Field(default=0, ge=0)
    current: float = Field(default=0, ge=0)
    participants: int = Field(default=0, ge=0)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    budget: Optional[str] = None
    spent: Optional[str] = None
    manager: Optional[str] = None
    image: Optional[str] = None


class ProjectUpdate(BaseModel):
    """Partial update — only supplied fields are changed."""
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=1000)
    category: Optional[ProjectCategory] = None
    location: Optional[str] = Field(default=None, min_length=2, max_length=100)
    status: Optional[ProjectStatus] = None
    progress: Optional[float] = Field(default=None, ge=0, le=100)
    target: Optional[float] = Field(default=None, ge=0)
    current: Optional[float] = Field(default=None, ge=0)
    participants: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    budget: Optional[str] = None
    spent: Optional[str] = None
    manager: Optional[str] = None
    image: Optional[str] = None


class ProjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    category: str
    location: str
    status: str
    progress: float
    target: float
    current: float
    participants: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    budget: Optional[str] = None
    spent: Optional[str] = None
    manager: Optional[str] = None
    image: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Articles
# ---------------------------------------------------------------------------

class ArticleCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    content: str = Field(..., min_length=50)
    excerpt: Optional[str] = Field(default=None, max_length=300)
    author: str = Field(..., min_length=2, max_length=100)
    category: ArticleCategory = "news"
    tags: List[str] = Field(default_factory=list, max_length=10)
    image: Optional[str] = None
    published: bool = False


class ArticleUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    content: Optional[str] = Field(default=None, min_length=50)
    excerpt: Optional[str] = Field(default=None, max_length=300)
    author: Optional[str] = Field(default=None, min_length=2, max_length=100)
    category: Optional[ArticleCategory] = None
    tags: Optional[List[str]] = Field(default=None, max_length=10)
    image: Optional[str] = None
    published: Optional[bool] = None


class ArticleRead(BaseModel):
    id: int
    title: str
    slug: str
    content: str
    excerpt: str
    author: str
    category: str
    tags: List[str]
    image: Optional[str] = None
    published: bool
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# NFTs
# ---------------------------------------------------------------------------

class NFTCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=500)
    image: str = Field(..., min_length=1)
    category: NFTCategory
    rarity: NFTRarity
    token_id: Optional[str] = Field(default=None, max_length=64)
    project: Optional[str] = None
    owner: Optional[str] = None
    owner_email: Optional[str] = None
    mint_date: Optional[str] = None
    status: NFTStatus = "pending"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    contract_address: Optional[str] = None
    transaction_hash: Optional[str] = None


class NFTUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10, max_length=500)
    image: Optional[str] = None
    category: Optional[NFTCategory] = None
    rarity: Optional[NFTRarity] = None
    project: Optional[str] = None
    owner: Optional[str] = None
    owner_email: Optional[str] = None
    status: Optional[NFTStatus] = None
    metadata: Optional[Dict[str, Any]] = None
    contract_address: Optional[str] = None
    transaction_hash: Optional[str] = None


class NFTRead(BaseModel):
    id: int
    token_id: str
    name: str
    description: str
    image: str
    category: str
    rarity: str
    project: Optional[str] = None
    owner: Optional[str] = None
    owner_email: Optional[str] = None
    mint_date: str
    status: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    contract_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserRead(BaseModel):
    id: int
    uid: str
    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    email_verified: bool
    role: str
    permissions: List[str]
    is_active: bool
    two_factor_enabled: bool
    created_at: datetime
    updated_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None
    login_count: int = 0


class UserUpdate(BaseModel):
    """Admin edit. `uid`, `email` and `created_at` are not editable."""
    display_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    photo_url: Optional[str] = None
    bio: Optional[str] = Field(default=None, max_length=500)
    location: Optional[str] = Field(default=None, max_length=100)
    role: Optional[Literal["user", "admin"]] = None
    is_active: Optional[bool] = None
    email_verified: Optional[bool] = None


class PromoteRequest(BaseModel):
    role: Literal["admin", "super_admin"] = "admin"


class AdminStatus(BaseModel):
    is_admin: bool
    is_super_admin: bool
    permissions: List[str]
    is_active: bool


# ---------------------------------------------------------------------------
# Admin dashboard
# ---------------------------------------------------------------------------

class AdminStats(BaseModel):
    users: int
    active_users: int
    admins: int
    projects: int
    active_projects: int
    articles: int
    published_articles: int
    nfts: int
    minted_nfts: int
    failed_logins_24h: int
    active_sessions: int
