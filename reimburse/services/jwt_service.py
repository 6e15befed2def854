"""
JWT Service: verification of identity-provider bearer tokens.

Algorithm: HS256 with IDENTITY_TOKEN_SECRET.

Token payload:
{
    "sub": <uid>,
    "email": <email>,
    "name": <display name>,
    "iat": <issued_at>,
    "exp": <expires_at>
}

``issue_identity_token`` exists for local development and tests, where no
external identity provider is running.
"""

from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

DEFAULT_EXPIRES = 3600
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("IDENTITY_TOKEN_SECRET") or current_app.config["SECRET_KEY"]


def issue_identity_token(uid: str, email: str = "", name: str = "", expires_in: int = DEFAULT_EXPIRES) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": uid,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
    }
    audience = current_app.config.get("IDENTITY_TOKEN_AUDIENCE")
    if audience:
        payload["aud"] = audience
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def decode_identity_token(token: str) -> dict:
    """
    Decode and verify a bearer token.

    Returns the payload dict on success.
    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    audience = current_app.config.get("IDENTITY_TOKEN_AUDIENCE")
    options = {"require": ["sub", "exp"]}
    if audience:
        payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM], audience=audience, options=options)
    else:
        payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM], options=options)
    if not isinstance(payload.get("sub"), str) or not payload["sub"]:
        raise jwt.InvalidTokenError("Token subject must be a non-empty uid string")
    return payload
