"""Business context: operating hours and the provider roster.

Two loaders share one interface. ``DatabaseContextLoader`` always queries the
session it was given and is the one to use inside a booking transaction.
``CachedContextLoader`` serves the public read path from a disk cache and
falls back to the database on a miss.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

import structlog
from diskcache import Cache
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .config import settings
from .errors import BusinessNotFound
from .models import Business

log = structlog.get_logger("booking.context")

GENERAL_CATEGORY = "general"


@dataclass(frozen=True)
class HoursRow:
    day_of_week: int
    category: str
    open_time: str
    close_time: str
    is_closed: bool = False


@dataclass(frozen=True)
class Provider:
    id: int
    name: str = ""
    specialties: tuple[str, ...] = ()

    def is_qualified_for(self, category: str) -> bool:
        if not self.specialties:
            return True
        key = category.lower()
        return any(s.lower() == key for s in self.specialties)


@dataclass(frozen=True)
class BusinessContext:
    id: int
    slug: str
    name: str
    hours: tuple[HoursRow, ...]
    employees: tuple[Provider, ...]
    owners: tuple[Provider, ...]


def _to_provider(row) -> Provider:
    return Provider(
        id=row.id,
        name=row.name or "",
        specialties=tuple(s for s in (row.specialties or []) if s),
    )


def build_business_context(business: Business) -> BusinessContext:
    return BusinessContext(
        id=business.id,
        slug=business.slug,
        name=business.name,
        hours=tuple(
            HoursRow(
                day_of_week=int(h.day_of_week),
                category=h.category or GENERAL_CATEGORY,
                open_time=h.open_time,
                close_time=h.close_time,
                is_closed=bool(h.is_closed),
            )
            for h in business.business_hours
        ),
        employees=tuple(_to_provider(e) for e in business.employees),
        owners=tuple(_to_provider(o) for o in business.owners),
    )


class ContextLoader(ABC):
    @abstractmethod
    def load(self, business_slug: str) -> BusinessContext:
        """Return the hours and roster snapshot for ``business_slug``."""


class DatabaseContextLoader(ContextLoader):
    def __init__(self, db: Session):
        self.db = db

    def load(self, business_slug: str) -> BusinessContext:
        slug = (business_slug or "").strip().lower()
        business = self.db.execute(
            select(Business)
            .where(Business.slug == slug)
            .options(
                selectinload(Business.business_hours),
                selectinload(Business.employees),
                selectinload(Business.owners),
            )
        ).scalar_one_or_none()
        if business is None:
            raise BusinessNotFound(slug)
        return build_business_context(business)


_context_cache: Cache | None = None


def get_context_cache() -> Cache:
    global _context_cache
    if _context_cache is None:
        _context_cache = Cache(settings.CONTEXT_CACHE_DIR)
    return _context_cache


def _cache_key(business_slug: str) -> str:
    return f"business-context:{(business_slug or '').strip().lower()}"


class CachedContextLoader(ContextLoader):
    def __init__(self, db: Session, cache: Cache | None = None, ttl_seconds: int | None = None):
        self.fallback = DatabaseContextLoader(db)
        self.cache = cache if cache is not None else get_context_cache()
        self.ttl_seconds = max(
            1, int(ttl_seconds if ttl_seconds is not None else settings.CONTEXT_CACHE_TTL_SECONDS)
        )

    def load(self, business_slug: str) -> BusinessContext:
        key = _cache_key(business_slug)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        context = self.fallback.load(business_slug)
        self.cache.set(key, context, expire=self.ttl_seconds)
        log.debug("business_context_cached", business_slug=context.slug, ttl=self.ttl_seconds)
        return context


def invalidate_business_context(business_slug: str, cache: Cache | None = None) -> bool:
    target = cache if cache is not None else get_context_cache()
    return bool(target.delete(_cache_key(business_slug)))
