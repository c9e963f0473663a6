"""
Client for the Real-Debrid REST API.
Docs: https://api.real-debrid.com/

Every failure (timeout, network error, non-2xx status, unparseable body) is
raised as UpstreamValidationFailure so callers can treat it as "unknown"
and leave their own state untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import requests

from constants import REALDEBRID_API_URL, BUILD_VERSION
from exceptions import UpstreamValidationFailure
from utils import mask_credential

logger = logging.getLogger("main")

CONNECT_TIMEOUT_SECONDS = 5


@dataclass(frozen=True)
class RdUserInfo:
    username: Optional[str]
    account_type: Optional[str]
    expires_at: Optional[datetime]


@dataclass(frozen=True)
class UnrestrictedLink:
    download_url: str
    file_name: Optional[str]
    file_size_bytes: Optional[int]


def parse_rd_timestamp(value) -> Optional[datetime]:
    """Parse an RD ISO timestamp such as '2024-12-31T23:59:59.000Z' into aware UTC"""
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class RealDebridClient:
    """
    Thin synchronous client; one instance is shared by the app and its jobs.

    ``timeout`` is not a deadline for the whole call. requests applies the
    connect part while opening the connection and the read part to every
    single wait on the socket, so a server trickling bytes can take longer.
    """

    def __init__(self, base_url: str = REALDEBRID_API_URL, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.connect_timeout = min(CONNECT_TIMEOUT_SECONDS, timeout)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": f"DuckFlix/{BUILD_VERSION}"})

    @classmethod
    def from_settings(cls, realdebrid_settings):
        return cls(
            base_url=realdebrid_settings.get("base_url") or REALDEBRID_API_URL,
            timeout=realdebrid_settings.get("timeout_seconds", 10),
        )

    def _request(self, method, path, api_key, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=(self.connect_timeout, self.timeout),
                **kwargs,
            )
        except requests.Timeout as e:
            logger.warning(f"Real-Debrid {path} timed out for {mask_credential(api_key)}")
            raise UpstreamValidationFailure(f"Real-Debrid request timed out: {e}")
        except requests.RequestException as e:
            logger.warning(f"Real-Debrid {path} unreachable for {mask_credential(api_key)}: {e}")
            raise UpstreamValidationFailure(f"Real-Debrid request failed: {e}")

        if response.status_code in (401, 403):
            raise UpstreamValidationFailure("Invalid or expired RD API key", http_status=response.status_code)
        if not response.ok:
            raise UpstreamValidationFailure(
                f"Real-Debrid returned HTTP {response.status_code} for {path}", http_status=response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            raise UpstreamValidationFailure(f"Real-Debrid returned a non-JSON body for {path}",
                                            http_status=response.status_code)
        if not isinstance(data, dict):
            raise UpstreamValidationFailure(f"Unexpected Real-Debrid payload for {path}",
                                            http_status=response.status_code)
        return data

    def get_user(self, api_key: str) -> RdUserInfo:
        """GET /user: subscription type and expiry for a key"""
        data = self._request("GET", "/user", api_key)
        try:
            expires_at = parse_rd_timestamp(data.get("expiration") or data.get("premium_until"))
        except ValueError:
            raise UpstreamValidationFailure("Real-Debrid returned an unparseable expiry date")
        return RdUserInfo(
            username=data.get("username"),
            account_type=data.get("type"),
            expires_at=expires_at,
        )

    def unrestrict_link(self, api_key: str, link: str) -> UnrestrictedLink:
        """POST /unrestrict/link: turn a hoster link into a direct download URL"""
        data = self._request("POST", "/unrestrict/link", api_key, data={"link": link})
        download_url = data.get("download")
        if not download_url:
            raise UpstreamValidationFailure("Real-Debrid did not return a download URL")
        filesize = data.get("filesize")
        return UnrestrictedLink(
            download_url=download_url,
            file_name=data.get("filename"),
            file_size_bytes=int(filesize) if filesize is not None else None,
        )
