"""
VOD Stream Routes - cache-first stream URL resolution
"""

from flask import Blueprint, g, request

from api_responses import success_response, handle_api_errors
from app_services.coordinator_service import get_services
from constants import MEDIA_TYPE_MOVIE, MEDIA_TYPES
from exceptions import ValidationException
from middleware.auth import api_login_required
from services.link_cache import ContentKey

stream_bp = Blueprint("stream", __name__, url_prefix="/api/vod")


def _content_key_from_request(data):
    media_type = data.get("type")
    if media_type not in MEDIA_TYPES:
        raise ValidationException(f"type must be one of {', '.join(MEDIA_TYPES)}")
    try:
        tmdb_id = int(data["tmdbId"])
        if media_type == MEDIA_TYPE_MOVIE:
            return ContentKey.movie(tmdb_id)
        return ContentKey.episode_of(tmdb_id, int(data["season"]), int(data["episode"]))
    except KeyError as e:
        raise ValidationException(f"Missing required parameter: {e.args[0]}")
    except (TypeError, ValueError) as e:
        raise ValidationException(f"Invalid content identifier: {e}")


@stream_bp.route("/stream", methods=["POST"])
@api_login_required
@handle_api_errors
def resolve_stream():
    data = request.get_json(silent=True) or {}
    content_key = _content_key_from_request(data)

    try:
        resolution = int(data.get("resolution") or 0)
        max_bitrate = data.get("maxBitrateMbps")
        max_bitrate = float(max_bitrate) if max_bitrate is not None else None
    except (TypeError, ValueError):
        raise ValidationException("resolution and maxBitrateMbps must be numbers")

    resolved = get_services().stream_resolver.resolve(
        g.current_user.id,
        content_key,
        resolution=resolution,
        link=data.get("link"),
        max_bitrate_mbps=max_bitrate,
        title=data.get("title"),
        year=str(data["year"]) if data.get("year") else None,
    )
    return success_response(resolved.to_dict())
