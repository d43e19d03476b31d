"""Member model.

One row per Supabase Auth identity. The primary key is the identity
provider's user id, so it is never generated locally.
Flask-Login integration via UserMixin (request_loader, not sessions).
"""

from flask_login import UserMixin

from membership.extensions import db


class Member(UserMixin, db.Model):
    __tablename__ = "members"

    ROLES = ["member", "admin"]

    id = db.Column(db.String(36), primary_key=True)  # Supabase auth user id
    email = db.Column(db.String(255), nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="member")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    setup_completed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    stripe_customer = db.relationship(
        "StripeCustomer", back_populates="member", uselist=False
    )
    subscription = db.relationship(
        "Subscription", back_populates="member", uselist=False
    )
    invoices = db.relationship(
        "Invoice", back_populates="member", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "setup_completed": self.setup_completed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Member {self.email} ({self.role})>"
