"""
Request guards.

authenticate validates the bearer access token and puts the typed Claims on
flask.g. The role/company guards are stacked beneath it:

    @bp.get("/companies/<company_id>/users")
    @authenticate
    @require_company_access
    def company_users(company_id): ...

Every guard answers 401 when no claims are attached and 403 when the caller
is known but not allowed; clients refresh on 401 and give up on 403.
"""
from __future__ import annotations

from functools import wraps
from typing import Optional

from flask import request, g, abort, current_app

from utils.tokens import Claims, TokenError


def current_issuer():
    return current_app.extensions["token_issuer"]


def current_token_store():
    return current_app.extensions["token_store"]


def current_claims() -> Optional[Claims]:
    return g.get("claims")


def _bearer_token() -> str:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        abort(401, description="Unauthorized - No token provided")
    token = auth.split(" ", 1)[1].strip()
    if not token:
        abort(401, description="Unauthorized - No token provided")
    return token


def authenticate(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        try:
            g.claims = current_issuer().verify_access_token(token)
        except TokenError:
            abort(401, description="Unauthorized - Invalid or expired token")
        return fn(*args, **kwargs)

    return wrapper


def _require_claims() -> Claims:
    claims = current_claims()
    if claims is None:
        abort(401, description="Authentication required")
    return claims


def _company_id_param(kwargs) -> int:
    try:
        return int(kwargs.get("company_id"))
    except (TypeError, ValueError):
        abort(400, description="Invalid company ID")


def require_admin(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if _require_claims().role != "admin":
            abort(403, description="Admin access required")
        return fn(*args, **kwargs)

    return wrapper


def require_owner(fn):
    """Owners and admins."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if _require_claims().role not in ("owner", "admin"):
            abort(403, description="Owner access required")
        return fn(*args, **kwargs)

    return wrapper


def require_same_company(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        claims = _require_claims()
        company_id = _company_id_param(kwargs)
        if claims.role == "admin":
            return fn(*args, **kwargs)
        if claims.company_id != company_id:
            abort(403, description="You do not have permission to access this company")
        return fn(*args, **kwargs)

    return wrapper


def require_company_access(fn):
    """Admins, owners attached to any company, or members of the requested company."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        claims = _require_claims()
        if claims.role == "admin":
            return fn(*args, **kwargs)
        if claims.role == "owner" and claims.company_id:
            return fn(*args, **kwargs)
        company_id = _company_id_param(kwargs)
        if claims.company_id != company_id:
            abort(403, description="You do not have permission to access this company")
        return fn(*args, **kwargs)

    return wrapper
