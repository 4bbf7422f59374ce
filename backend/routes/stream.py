"""Stream routes: /stream/<media_type>/<title_id> redirects to a working upstream."""

import logging

from flask import Blueprint, abort, current_app, redirect, request

from providers.base import MEDIA_TYPES

bp = Blueprint("stream", __name__)
logger = logging.getLogger(__name__)


@bp.route("/stream/<media_type>/<title_id>", methods=["GET"])
def stream(media_type, title_id):
    """Redirect the player to the best source for a movie or an episode.

    Query: username (required), season and episode (tvshows only).
    """
    if media_type not in MEDIA_TYPES:
        abort(404)
    username = request.args.get("username", "").strip()
    if not username:
        abort(400, description="username is required")

    season = request.args.get("season", type=int)
    episode = request.args.get("episode", type=int)
    if media_type == "tvshows" and (season is None or episode is None):
        abort(400, description="season and episode are required for tvshows")

    url = current_app.source_selector.get_best_source(
        title_id, media_type, season, episode, username=username,
    )
    if not url:
        abort(404, description="No working source available")
    return redirect(url, code=302)
