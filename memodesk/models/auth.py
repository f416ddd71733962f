"""
Auth Models — users backing the actor directory.

Authentication and session management live outside this service. The
`users` table only carries what the memo workflow needs to authorise a
transition and to snapshot reviewer display names.
"""

from datetime import datetime, timezone

from memodesk.models import db

ROLE_STAFF = "STAFF"
ROLE_DESK_HEAD = "DESK_HEAD"
ROLE_LEO = "LEO"

VALID_ROLES = frozenset({ROLE_STAFF, ROLE_DESK_HEAD, ROLE_LEO})


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    role = db.Column(
        db.String(20), nullable=False, default=ROLE_STAFF,
        comment="STAFF | DESK_HEAD | LEO",
    )
    department = db.Column(db.String(100))
    status = db.Column(db.String(20), default="active")  # active, inactive
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    @property
    def display_name(self):
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "department": self.department,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id} {self.email} role={self.role}>"
