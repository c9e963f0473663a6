"""
RD link cache.

Resolved stream URLs are stored per (content, resolution, credential
fingerprint) with an absolute TTL counted from the last put. Reads never
extend an entry's life; they only record last_accessed_at.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from constants import MEDIA_TYPE_MOVIE, MEDIA_TYPE_TV, MEDIA_TYPES
from db import db
from metrics import link_cache_lookups_total
from models.linkcache import RdLinkCache
from utils import now_utc, ensure_utc, short_fingerprint

logger = logging.getLogger("main")

DEFAULT_TTL = timedelta(hours=48)

RESOLUTION_PATTERNS = [
    (2160, re.compile(r"2160p|\b4k\b|\buhd\b", re.IGNORECASE)),
    (1080, re.compile(r"1080[pi]", re.IGNORECASE)),
    (720, re.compile(r"720p", re.IGNORECASE)),
    (480, re.compile(r"480p|\bsd\b", re.IGNORECASE)),
]

METADATA_FIELDS = ("title", "year", "estimated_bitrate_mbps", "file_size_bytes")


def parse_resolution(file_name):
    """Vertical resolution advertised in a release name, 0 when unknown"""
    if not file_name:
        return 0
    for resolution, pattern in RESOLUTION_PATTERNS:
        if pattern.search(file_name):
            return resolution
    return 0


@dataclass(frozen=True)
class ContentKey:
    tmdb_id: int
    media_type: str
    season: int = 0
    episode: int = 0

    def __post_init__(self):
        if self.media_type not in MEDIA_TYPES:
            raise ValueError(f"Unknown media type: {self.media_type}")
        if self.media_type == MEDIA_TYPE_TV and (self.season < 0 or self.episode < 0):
            raise ValueError("season and episode must not be negative")
        if self.media_type == MEDIA_TYPE_MOVIE and (self.season or self.episode):
            raise ValueError("movies have no season or episode")

    @classmethod
    def movie(cls, tmdb_id):
        return cls(int(tmdb_id), MEDIA_TYPE_MOVIE)

    @classmethod
    def episode_of(cls, tmdb_id, season, episode):
        return cls(int(tmdb_id), MEDIA_TYPE_TV, int(season), int(episode))

    @classmethod
    def parse(cls, value: str) -> "ContentKey":
        """Parse 'movie:603' or 'tv:1396:3:12'"""
        parts = value.split(":")
        try:
            if parts[0] == MEDIA_TYPE_MOVIE and len(parts) == 2:
                return cls.movie(parts[1])
            if parts[0] == MEDIA_TYPE_TV and len(parts) == 4:
                return cls.episode_of(parts[1], parts[2], parts[3])
        except ValueError:
            pass
        raise ValueError(f"Invalid content key: {value!r}")

    def __str__(self):
        if self.media_type == MEDIA_TYPE_MOVIE:
            return f"{self.media_type}:{self.tmdb_id}"
        return f"{self.media_type}:{self.tmdb_id}:{self.season}:{self.episode}"


@dataclass(frozen=True)
class CachedLink:
    content_key: ContentKey
    resolution: int
    stream_url: str
    file_name: Optional[str]
    created_at: datetime
    expires_at: datetime
    title: Optional[str] = None
    year: Optional[str] = None
    estimated_bitrate_mbps: Optional[float] = None
    file_size_bytes: Optional[int] = None

    @classmethod
    def from_row(cls, row: RdLinkCache):
        return cls(
            content_key=ContentKey(row.tmdb_id, row.media_type, row.season, row.episode),
            resolution=row.resolution,
            stream_url=row.stream_url,
            file_name=row.file_name,
            created_at=ensure_utc(row.created_at),
            expires_at=ensure_utc(row.expires_at),
            title=row.title,
            year=row.year,
            estimated_bitrate_mbps=row.estimated_bitrate_mbps,
            file_size_bytes=row.file_size_bytes,
        )


class LinkCache:
    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock: Callable[[], datetime] = now_utc):
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self.clock = clock

    @classmethod
    def from_settings(cls, coordinator_settings, clock=now_utc):
        return cls(ttl=timedelta(hours=coordinator_settings["link_cache_ttl_hours"]), clock=clock)

    @staticmethod
    def _lookup(content_key, resolution, fingerprint):
        return RdLinkCache.query.filter_by(
            tmdb_id=content_key.tmdb_id,
            media_type=content_key.media_type,
            season=content_key.season,
            episode=content_key.episode,
            resolution=resolution or 0,
            fingerprint=fingerprint,
        ).execution_options(populate_existing=True)

    def get(self, content_key: ContentKey, resolution: int, fingerprint: str) -> Optional[CachedLink]:
        now = self.clock()
        row = self._lookup(content_key, resolution, fingerprint).first()

        if row is None:
            link_cache_lookups_total.labels(result="miss").inc()
            logger.debug(f"[RD Cache] MISS for {content_key} @{resolution or 0} ({short_fingerprint(fingerprint)})")
            return None

        try:
            if ensure_utc(row.expires_at) <= now:
                db.session.delete(row)
                db.session.commit()
                link_cache_lookups_total.labels(result="expired").inc()
                logger.debug(f"[RD Cache] EXPIRED entry dropped for {content_key} ({short_fingerprint(fingerprint)})")
                return None

            row.last_accessed_at = now
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        link_cache_lookups_total.labels(result="hit").inc()
        logger.info(f"[RD Cache] HIT for {content_key} @{row.resolution} ({short_fingerprint(fingerprint)})")
        return CachedLink.from_row(row)

    def put(self, content_key: ContentKey, resolution: int, fingerprint: str, url: str,
            file_name: Optional[str] = None, **metadata) -> None:
        """Insert or replace the entry for this exact key and restart its TTL"""
        if not url:
            raise ValueError("url is required")
        unknown = set(metadata) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"Unsupported link metadata: {', '.join(sorted(unknown))}")

        now = self.clock()
        values = {
            "tmdb_id": content_key.tmdb_id,
            "media_type": content_key.media_type,
            "season": content_key.season,
            "episode": content_key.episode,
            "resolution": resolution or 0,
            "fingerprint": fingerprint,
            "stream_url": url,
            "file_name": file_name,
            "created_at": now,
            "expires_at": now + self.ttl,
            "last_accessed_at": now,
        }
        for field in METADATA_FIELDS:
            values[field] = metadata.get(field)

        stmt = insert(RdLinkCache).values(**values)
        replaced = {k: stmt.excluded[k] for k in ("stream_url", "file_name", "created_at", "expires_at",
                                                  "last_accessed_at") + METADATA_FIELDS}
        stmt = stmt.on_conflict_do_update(
            index_elements=["tmdb_id", "media_type", "season", "episode", "resolution", "fingerprint"],
            set_=replaced,
        )
        try:
            db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        logger.info(f"[RD Cache] CACHED {content_key} @{resolution or 0} ({short_fingerprint(fingerprint)}), "
                    f"expires {values['expires_at'].isoformat()}")

    def get_best(self, content_key: ContentKey, fingerprint: str,
                 max_bitrate_mbps: Optional[float] = None) -> Optional[CachedLink]:
        """Highest-resolution live entry for this credential that fits the bitrate budget.

        Entries without a bitrate estimate are assumed to fit.
        """
        rows = (
            RdLinkCache.query.filter(
                RdLinkCache.tmdb_id == content_key.tmdb_id,
                RdLinkCache.media_type == content_key.media_type,
                RdLinkCache.season == content_key.season,
                RdLinkCache.episode == content_key.episode,
                RdLinkCache.fingerprint == fingerprint,
                RdLinkCache.expires_at > self.clock(),
            )
            .order_by(RdLinkCache.resolution.desc(), RdLinkCache.created_at.desc())
            .all()
        )
        for row in rows:
            if (max_bitrate_mbps is None or row.estimated_bitrate_mbps is None
                    or row.estimated_bitrate_mbps <= max_bitrate_mbps):
                return self.get(content_key, row.resolution, fingerprint)
        return None

    def evict_expired(self) -> int:
        stmt = (
            delete(RdLinkCache)
            .where(RdLinkCache.expires_at <= self.clock())
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        removed = result.rowcount or 0
        if removed:
            logger.info(f"[RD Cache] Cleaned up {removed} expired links")
        return removed

    def evict_fingerprint(self, fingerprint: str) -> int:
        """Drop every entry resolved with a credential, used when its key is replaced"""
        stmt = (
            delete(RdLinkCache)
            .where(RdLinkCache.fingerprint == fingerprint)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return result.rowcount or 0
