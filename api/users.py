from __future__ import annotations

import logging
from typing import Tuple

from flask import Blueprint, request, jsonify, g, abort
from sqlalchemy import func, or_

from models import storage
from models.user import User
from models.schemas.user import (
    UserCreateSchema,
    UserOutSchema,
    PasswordChangeSchema,
    RoleUpdateSchema,
)
from utils.decorators import (
    authenticate,
    require_admin,
    require_company_access,
    current_token_store,
)
from utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)

MAX_LIMIT = 100

bp = Blueprint("users", __name__)

user_create_schema = UserCreateSchema()
user_out_schema = UserOutSchema()
user_list_out_schema = UserOutSchema(many=True)
password_change_schema = PasswordChangeSchema()
role_update_schema = RoleUpdateSchema()


def parse_pagination() -> Tuple[int, int]:
    try:
        page = int(request.args.get("page", "1"))
        limit = int(request.args.get("limit", "20"))
        page = max(page, 1)
        limit = max(1, min(limit, MAX_LIMIT))
        return page, limit
    except ValueError:
        abort(400, description="page and limit must be integers")


def _get_user_or_404(user_id: int) -> User:
    user = storage.get(User, user_id)
    if user is None:
        abort(404, description="User not found")
    return user


def _end_sessions(user: User) -> int:
    """Revoke every refresh token of the user; their access tokens lapse within 15 minutes."""
    revoked = current_token_store().revoke_all(user.id, request.remote_addr)
    logger.info("Revoked %d refresh tokens for user %s", revoked, user.id)
    return revoked


@bp.get("/users")
@authenticate
@require_admin
def list_users():
    """
    List users - admin
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: query
        name: page
        type: integer
        default: 1
      - in: query
        name: limit
        type: integer
        default: 20
    responses:
      200: { description: OK }
      401: { description: Unauthorized }
      403: { description: Forbidden }
    """
    session = storage.get_session()
    page, limit = parse_pagination()
    query = session.query(User)
    total = query.count()
    rows = query.order_by(User.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return jsonify(
        {
            "data": user_list_out_schema.dump(rows),
            "meta": {"page": page, "limit": limit, "total": total}
        }
    ), 200


@bp.post("/users")
@authenticate
@require_admin
def create_user():
    """
    Provision a user - admin
    ---
    tags:
      - Users
    security:
      - Bearer: []
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            username: { type: string }
            email: { type: string }
            password: { type: string }
            name: { type: string }
            role: { type: string, enum: [member, owner, admin] }
            companyId: { type: integer }
    responses:
      201: { description: Created }
      400: { description: Validation error }
      409: { description: Username or email already registered }
    """
    data = user_create_schema.load(request.get_json(silent=True) or {})

    session = storage.get_session()
    duplicate = session.query(User).filter(
        or_(
            func.lower(User.username) == data["username"].lower(),
            func.lower(User.email) == data["email"].lower(),
        )
    ).first()
    if duplicate:
        abort(409, description="Username or email already registered")

    user = User(
        username=data["username"],
        email=data["email"],
        password_hash=hash_password(data["password"]),
        name=data.get("name"),
        role=data["role"],
        company_id=data.get("company_id"),
        is_active=True,
    )
    storage.new(user)
    storage.save()
    logger.info("User %s provisioned by %s", user.id, g.claims.id)
    return jsonify({"data": user_out_schema.dump(user)}), 201


@bp.get("/users/me")
@authenticate
def me():
    """
    Get current user info
    ---
    tags:
      - Users
    security:
      - Bearer: []
    responses:
      200: { description: OK }
      401: { description: Unauthorized }
    """
    user = storage.get(User, g.claims.id)
    if user is None or not user.is_active:
        abort(401, description="User not found")
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.patch("/users/<int:user_id>/password")
@authenticate
def change_password(user_id: int):
    """
    Change a password (self, or any user for admins). Ends every session of that user.
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: integer
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            currentPassword: { type: string }
            newPassword: { type: string }
    responses:
      200: { description: OK }
      401: { description: Current password does not match }
      403: { description: Forbidden }
    """
    claims = g.claims
    if claims.id != user_id and claims.role != "admin":
        abort(403, description="You can only change your own password")
    data = password_change_schema.load(request.get_json(silent=True) or {})

    user = _get_user_or_404(user_id)
    if claims.id == user_id and user.password_hash:
        if not verify_password(data.get("current_password") or "", user.password_hash):
            abort(401, description="Current password is incorrect")

    user.password_hash = hash_password(data["new_password"])
    user.save()
    revoked = _end_sessions(user)
    return jsonify({"success": True, "revokedSessions": revoked}), 200


@bp.patch("/users/<int:user_id>/role")
@authenticate
@require_admin
def set_role(user_id: int):
    """
    Admin-only: change a user's role. Ends every session of that user.
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: integer
        required: true
      - in: body
        name: body
        schema:
          type: object
          properties:
            role: { type: string, enum: [member, owner, admin] }
    responses:
      200: { description: OK }
    """
    data = role_update_schema.load(request.get_json(silent=True) or {})
    user = _get_user_or_404(user_id)
    if user.role != data["role"]:
        user.role = data["role"]
        user.save()
        _end_sessions(user)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.post("/users/<int:user_id>/deactivate")
@authenticate
@require_admin
def deactivate_user(user_id: int):
    """
    Admin-only: deactivate a user (soft) and end their sessions
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: user_id
        type: integer
        required: true
    responses:
      200: { description: OK }
      404: { description: Not found }
    """
    user = _get_user_or_404(user_id)
    if user.id == g.claims.id:
        abort(400, description="You cannot deactivate your own account")
    user.is_active = False
    user.save()
    _end_sessions(user)
    return jsonify({"data": user_out_schema.dump(user)}), 200


@bp.get("/companies/<company_id>/users")
@authenticate
@require_company_access
def company_users(company_id):
    """
    List the active users of a company (admins, owners, or members of that company)
    ---
    tags:
      - Users
    security:
      - Bearer: []
    parameters:
      - in: path
        name: company_id
        type: integer
        required: true
    responses:
      200: { description: OK }
      400: { description: Invalid company ID }
      403: { description: Forbidden }
    """
    try:
        company_id = int(company_id)
    except ValueError:
        abort(400, description="Invalid company ID")

    session = storage.get_session()
    rows = (
        session.query(User)
        .filter(User.company_id == company_id, User.is_active.is_(True))
        .order_by(User.id.asc())
        .all()
    )
    return jsonify({"data": user_list_out_schema.dump(rows)}), 200
