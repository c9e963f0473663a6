"""
Cache-first resolution of playable stream URLs.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from exceptions import ValidationException
from services.credential_resolver import resolve_credential
from services.link_cache import ContentKey, LinkCache, parse_resolution
from services.realdebrid import RealDebridClient
from utils import short_fingerprint

logger = logging.getLogger("main")

SOURCE_CACHE = "cache"
SOURCE_REALDEBRID = "realdebrid"


@dataclass(frozen=True)
class StreamResolution:
    stream_url: str
    file_name: Optional[str]
    resolution: int
    source: str

    def to_dict(self):
        return {
            "streamUrl": self.stream_url,
            "fileName": self.file_name,
            "resolution": self.resolution,
            "source": self.source,
        }


class StreamResolver:
    def __init__(self, link_cache: LinkCache, client: RealDebridClient):
        self.link_cache = link_cache
        self.client = client

    def resolve(self, user_id, content_key: ContentKey, resolution: int = 0, link: Optional[str] = None,
                max_bitrate_mbps: Optional[float] = None, title: Optional[str] = None,
                year: Optional[str] = None) -> StreamResolution:
        """Return a cached URL for the caller's credential, else unrestrict `link` and cache it.

        With no resolution requested, the best cached entry within the bitrate
        budget is used.
        """
        credential = resolve_credential(user_id)
        fingerprint = credential.fingerprint

        if resolution:
            cached = self.link_cache.get(content_key, resolution, fingerprint)
        else:
            cached = self.link_cache.get_best(content_key, fingerprint, max_bitrate_mbps)
        if cached is not None:
            return StreamResolution(cached.stream_url, cached.file_name, cached.resolution, SOURCE_CACHE)

        if not link:
            raise ValidationException(f"No cached stream for {content_key}; a source link is required")

        unrestricted = self.client.unrestrict_link(credential.api_key, link)
        resolved_resolution = resolution or parse_resolution(unrestricted.file_name)
        self.link_cache.put(
            content_key,
            resolved_resolution,
            fingerprint,
            unrestricted.download_url,
            unrestricted.file_name,
            title=title,
            year=year,
            file_size_bytes=unrestricted.file_size_bytes,
        )
        logger.info(f"[Stream] Resolved {content_key} via Real-Debrid for {short_fingerprint(fingerprint)}")
        return StreamResolution(unrestricted.download_url, unrestricted.file_name, resolved_resolution,
                                SOURCE_REALDEBRID)
