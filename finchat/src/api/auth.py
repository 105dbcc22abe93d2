"""
FinChat - Request Authentication
=================================
Identity is established upstream (gateway / auth proxy); the verified
user id arrives in the ``settings.AUTH_USER_HEADER`` request header.
"""

from __future__ import annotations

from fastapi import Request

from finchat.config.settings import settings


async def get_current_user_id(request: Request) -> str | None:
    """Return the authenticated user id, or ``None`` when the header is missing or blank."""
    user_id = request.headers.get(settings.AUTH_USER_HEADER, "").strip()
    return user_id or None
