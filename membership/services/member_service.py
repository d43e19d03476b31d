"""Member service — credential resolution and member-facing reads.

- resolve_credential: bearer token -> Member (used by the Flask-Login request_loader)
- complete_setup: mark the member as having set their own password
- get_member_summary / list_member_invoices: the member's own portal views
"""

import logging
from datetime import datetime, timedelta, timezone

from membership.errors import ValidationError
from membership.extensions import db
from membership.models.billing import Invoice, Subscription
from membership.models.member import Member

logger = logging.getLogger(__name__)

MAX_HISTORY_MONTHS = 120


def resolve_credential(identity, token):
    """Return the active Member a token belongs to, or None.

    A verified identity with no Member row gets one (role=member): Supabase
    creates the auth user on invite acceptance, and the portal learns about
    it on the first authenticated request. Deactivated members resolve to
    None, so they are treated as unauthenticated.
    """
    user = identity.verify_token(token)
    if not user:
        return None

    member = db.session.get(Member, user["id"])
    if member is None:
        member = Member(
            id=user["id"],
            email=(user.get("email") or "").lower(),
            role="member",
        )
        db.session.add(member)
        db.session.commit()
        logger.info(f"Created member row for identity {member.id}")

    if not member.is_active:
        logger.info(f"Rejected credential for deactivated member {member.id}")
        return None

    return member


def complete_setup(member):
    if not member.setup_completed:
        member.setup_completed = True
        db.session.commit()
    return member


def paid_total_cents(member_id):
    invoices = Invoice.query.filter_by(member_id=member_id, status="paid").all()
    return sum(inv.amount_paid_cents or 0 for inv in invoices)


def get_member_summary(member):
    """Profile + current subscription + total contributed."""
    sub = Subscription.query.filter_by(member_id=member.id).first()
    return {
        "profile": member.to_dict(),
        "subscription": sub.to_dict() if sub else None,
        "total_contributed_cents": paid_total_cents(member.id),
    }


def list_member_invoices(member, status=None, months=None):
    """The member's invoices, newest first.

    Args:
        status: only "paid" is a recognised filter; anything else returns all
        months: only invoices created within the last N months (30-day months),
            1..MAX_HISTORY_MONTHS
    """
    if months is not None and not 1 <= months <= MAX_HISTORY_MONTHS:
        raise ValidationError(f"months must be between 1 and {MAX_HISTORY_MONTHS}")

    query = Invoice.query.filter_by(member_id=member.id)
    if status == "paid":
        query = query.filter(Invoice.status == "paid")
    if months:
        cutoff = datetime.now(timezone.utc) - timedelta(days=30 * months)
        query = query.filter(Invoice.created_at >= cutoff)
    return query.order_by(Invoice.created_at.desc()).all()
