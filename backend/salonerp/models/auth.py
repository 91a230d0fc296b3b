from __future__ import annotations

from ..extensions import db
from salonerp.time_utils import to_utc_z

ROLE_SUPER_ADMIN = "super_admin"
ROLE_SALON_ADMIN = "salon_admin"
ROLE_STAFF = "staff"

VALID_ROLES = (ROLE_SUPER_ADMIN, ROLE_SALON_ADMIN, ROLE_STAFF)


class Staff(db.Model):
    """
    A person acting on behalf of a salon.

    Super-admins are platform operators: salon_id is NULL and they pick the
    target salon per request. Everyone else belongs to exactly one salon.
    Credentials live with the external identity provider, not here.
    """
    __tablename__ = "staff"
    __table_args__ = (
        db.UniqueConstraint("salon_id", "email", name="uq_staff_salon_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(32), nullable=False, default=ROLE_STAFF)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    salon = db.relationship("Salon", backref=db.backref("staff", lazy=True))

    def __repr__(self) -> str:
        return f"<Staff id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer session issued to a staff member.

    Only the SHA-256 of the token is stored. salon_id is captured at issue
    time so the tenant context of a session never changes.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=False, index=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=True, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    staff = db.relationship("Staff", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "staff_id": self.staff_id,
            "salon_id": self.salon_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }
