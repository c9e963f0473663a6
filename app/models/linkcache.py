"""
Model: RdLinkCache
Resolved RD stream URLs, scoped per credential fingerprint
"""

from db import db
from utils import now_utc


class RdLinkCache(db.Model):
    __tablename__ = "rd_link_cache"

    id = db.Column(db.Integer, primary_key=True)
    tmdb_id = db.Column(db.Integer, nullable=False)
    media_type = db.Column(db.String(10), nullable=False)  # 'movie' | 'tv'
    # 0 for movies: NULLs never collide in a UNIQUE index, which would break the upsert
    season = db.Column(db.Integer, nullable=False, default=0)
    episode = db.Column(db.Integer, nullable=False, default=0)
    resolution = db.Column(db.Integer, nullable=False, default=0)  # 0 = unknown
    fingerprint = db.Column(db.String(64), nullable=False)

    stream_url = db.Column(db.Text, nullable=False)
    file_name = db.Column(db.String(500))
    title = db.Column(db.String(255))
    year = db.Column(db.String(10))
    estimated_bitrate_mbps = db.Column(db.Float)
    file_size_bytes = db.Column(db.BigInteger)

    created_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    expires_at = db.Column(db.DateTime, nullable=False)
    last_accessed_at = db.Column(db.DateTime, nullable=False, default=now_utc)

    __table_args__ = (
        db.UniqueConstraint(
            "tmdb_id", "media_type", "season", "episode", "resolution", "fingerprint",
            name="uq_rd_link_cache_lookup",
        ),
        db.Index("idx_rd_link_cache_expiry", "expires_at"),
    )
