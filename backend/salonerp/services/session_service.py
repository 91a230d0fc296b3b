# Overview: Bearer session issue/validation; resolves a token to a SalonContext.

"""
Session Token Service

Tokens are opaque, high-entropy strings handed to the client once. Only the
SHA-256 hash is stored. The salon captured at issue time is the tenant
context for the whole session lifetime.

Super-admins have no salon of their own; they name the target salon per
request and validate_session checks that it exists.
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, Staff, Salon
from ..permissions import permissions_for_role
from salonerp.time_utils import utcnow
from .context import SalonContext


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy)."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(staff_id: int, ttl_hours: int | None = None) -> tuple[SessionToken, str]:
    """
    Issue a session for a staff member.

    Returns (session_record, plaintext_token). The plaintext token is never
    stored and cannot be recovered later.
    """
    staff = db.session.get(Staff, staff_id)
    if staff is None or not staff.is_active:
        raise ValueError("staff member not found or inactive")

    if ttl_hours is None:
        ttl_hours = current_app.config.get("SESSION_TTL_HOURS", 24)

    token = generate_token()
    session = SessionToken(
        staff_id=staff.id,
        salon_id=staff.salon_id,
        token_hash=hash_token(token),
        expires_at=utcnow() + timedelta(hours=ttl_hours),
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.revoked_at is not None:
        return False
    session.revoked_at = utcnow()
    db.session.commit()
    return True


def validate_session(token: str, requested_salon_id: int | None = None) -> SalonContext | None:
    """
    Resolve a bearer token to a SalonContext.

    Returns None when the token is unknown, revoked, expired, belongs to an
    inactive staff member, or (super-admins only) names no valid salon.
    """
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.revoked_at is not None:
        return None
    if session.expires_at <= utcnow():
        return None

    staff = session.staff
    if staff is None or not staff.is_active:
        return None

    context_salon_id = session.salon_id
    if staff.salon_id is None:
        # Platform operator: salon chosen per request
        if requested_salon_id is None:
            return None
        context_salon_id = requested_salon_id

    salon = db.session.get(Salon, context_salon_id) if context_salon_id else None
    if salon is None or not salon.is_active:
        return None

    return SalonContext(
        salon_id=salon.id,
        staff_id=staff.id,
        role=staff.role,
        permissions=permissions_for_role(staff.role),
    )
