"""
Authentication blueprint:
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- GET  /auth/status
- GET  /auth/initial-status

The implementation:
- Verifies credentials with utils.security.verify_password (scrypt, plus legacy formats)
- Issues 15-minute JWT access tokens and opaque 7-day refresh tokens
- Refresh tokens are single use: every refresh rotates them through the token store
- The refresh token travels in an httpOnly cookie, and in the JSON body as a
  fallback for clients that cannot keep cookies
"""
from __future__ import annotations

import logging
from typing import Optional

from flask import Blueprint, request, jsonify, g, abort, current_app
from sqlalchemy import func, or_

from models import storage
from models.base_model import utcnow
from models.user import User
from models.schemas.user import LoginSchema, RefreshTokenSchema, UserOutSchema

from utils.decorators import authenticate, current_issuer
from utils.security import verify_password
from utils.token_store import InvalidRefreshTokenError, RefreshTokenReuseError
from utils.tokens import TokenError

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__, url_prefix="/auth")

login_schema = LoginSchema()
refresh_schema = RefreshTokenSchema()
user_out_schema = UserOutSchema()

INVALID_CREDENTIALS = "Invalid username or password"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"


def client_ip() -> Optional[str]:
    return request.remote_addr


def find_identity(identifier: str) -> Optional[User]:
    """Exact username match first, then a case-insensitive username/email match."""
    session = storage.get_session()
    user = session.query(User).filter(User.username == identifier).first()
    if user is not None:
        return user
    lowered = identifier.lower()
    return (
        session.query(User)
        .filter(or_(func.lower(User.username) == lowered, func.lower(User.email) == lowered))
        .order_by(User.id)
        .first()
    )


def _presented_refresh_token() -> Optional[str]:
    token = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    if token:
        return token
    payload = refresh_schema.load(request.get_json(silent=True) or {})
    return payload.get("refresh_token")


def _set_refresh_cookie(response, pair):
    response.set_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        pair.refresh_token,
        expires=pair.expires_at,
        httponly=True,
        samesite="Strict",
        secure=current_app.config["REFRESH_COOKIE_SECURE"],
        path="/",
    )
    return response


def _clear_refresh_cookie(response):
    response.delete_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        path="/",
        httponly=True,
        samesite="Strict",
        secure=current_app.config["REFRESH_COOKIE_SECURE"],
    )
    return response


@bp.post("/login")
def login():
    """
    Login: returns an access token and sets the refresh token cookie
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             username: { type: string, description: username or email }
             password: { type: string }
    responses:
      200:
        description: OK (returns tokens)
      400:
        description: Validation error
      401:
        description: Invalid username or password
    """
    payload = login_schema.load(request.get_json(silent=True) or {})
    identifier = payload["username"]

    user = find_identity(identifier)
    if user is None:
        logger.info("Login rejected for %r: unknown identity", identifier)
        abort(401, description=INVALID_CREDENTIALS)
    if not user.is_active:
        logger.info("Login rejected for user %s: account deactivated", user.id)
        abort(401, description=INVALID_CREDENTIALS)
    if not verify_password(payload["password"], user.password_hash):
        logger.info("Login rejected for user %s: credential mismatch", user.id)
        abort(401, description=INVALID_CREDENTIALS)

    user.last_login = utcnow()
    storage.new(user)
    storage.save()

    issuer = current_issuer()
    pair = issuer.issue_token_pair(user, client_ip())
    logger.info("User %s logged in with role %s", user.id, user.role)

    response = jsonify(
        {
            "success": True,
            "message": "Authentication successful",
            "user": user_out_schema.dump(user),
            "accessToken": pair.access_token,
            "refreshToken": pair.refresh_token,
            "expiresIn": issuer.access_ttl_ms,
        }
    )
    return _set_refresh_cookie(response, pair), 200


@bp.post("/refresh")
def refresh():
    """
    Exchange a refresh token for a new token pair (rotation)
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         required: false
         schema:
           type: object
           properties:
             refreshToken: { type: string, description: fallback when the cookie is unavailable }
    responses:
      200:
        description: OK (returns tokens)
      401:
        description: Missing, invalid, expired or reused refresh token
    """
    token = _presented_refresh_token()
    if not token:
        abort(401, description="Refresh token is required")

    store = current_app.extensions["token_store"]
    record = store.find_usable(token)
    if record is None:
        previous = store.find(token)
        if previous is not None and previous.replaced_by_token:
            logger.warning("Refresh token reuse detected for user %s", previous.user_id)
        else:
            logger.info("Refresh rejected: token not usable")
        abort(401, description=INVALID_REFRESH_TOKEN)

    user = storage.get(User, record.user_id)
    if user is None or not user.is_active:
        logger.info("Refresh rejected: identity %s missing or deactivated", record.user_id)
        abort(401, description=INVALID_REFRESH_TOKEN)

    issuer = current_issuer()
    try:
        pair = issuer.rotate_token_pair(token, user, client_ip())
    except RefreshTokenReuseError as exc:
        logger.warning("Refresh token reuse detected for user %s", exc.user_id)
        abort(401, description=INVALID_REFRESH_TOKEN)
    except InvalidRefreshTokenError:
        logger.info("Refresh rejected: token consumed concurrently or expired")
        abort(401, description=INVALID_REFRESH_TOKEN)

    response = jsonify(
        {
            "success": True,
            "message": "Token refresh successful",
            "accessToken": pair.access_token,
            "refreshToken": pair.refresh_token,
            "expiresIn": issuer.access_ttl_ms,
        }
    )
    return _set_refresh_cookie(response, pair), 200


@bp.post("/logout")
def logout():
    """
    logout: revokes the refresh token and clears the cookie. Always succeeds.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         required: false
         schema:
           type: object
           properties:
             refreshToken: { type: string }
    responses:
      200:
        description: Logged out
    """
    try:
        token = _presented_refresh_token()
        if token:
            current_app.extensions["token_store"].revoke(token, client_ip())
    except Exception:
        logger.exception("Refresh token revocation failed during logout")
        storage.rollback()

    response = jsonify({"success": True, "message": "Logged out successfully"})
    return _clear_refresh_cookie(response), 200


@bp.get("/status")
@authenticate
def status():
    """
    Confirms the bearer access token
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Authenticated
      401:
        description: Unauthorized
    """
    return jsonify({"authenticated": True, "user": g.claims.to_payload()}), 200


@bp.get("/initial-status")
def initial_status():
    """
    Reports whether the caller holds a valid access token, without a 401
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: authenticated true with the token's claims, or false with a reason
    """
    auth = request.headers.get("Authorization", "")
    token = auth.split(" ", 1)[1].strip() if auth.startswith("Bearer ") else ""
    if not token:
        return jsonify({"authenticated": False, "message": "No access token provided"}), 200
    try:
        claims = current_issuer().verify_access_token(token)
    except TokenError:
        return jsonify({"authenticated": False, "message": "Invalid or expired token"}), 200
    return jsonify({"authenticated": True, "user": claims.to_payload()}), 200
