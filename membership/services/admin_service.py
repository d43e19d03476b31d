"""Admin service — directory views and member management.

Read views fetch whole tables and aggregate in Python.

Mutations:
- deactivate_member: soft-deactivate + best-effort Stripe cancellation
- reactivate_member: flip is_active back on (no subscription is recreated)
- invite_member: delegate to Supabase Auth (invite, or recovery on resend)
"""

import logging
import re
from datetime import datetime, timezone

from flask import current_app

from membership.errors import ConflictError, NotFoundError, ValidationError
from membership.extensions import db
from membership.models.billing import Invoice, Subscription
from membership.models.member import Member
from membership.services.identity_service import IdentityError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _as_utc(dt):
    # SQLite hands back naive datetimes; everything stored is UTC.
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _paid_totals_by_member(invoices):
    totals = {}
    for inv in invoices:
        if inv.status == "paid":
            totals[inv.member_id] = totals.get(inv.member_id, 0) + (inv.amount_paid_cents or 0)
    return totals


# ══════════════════════════════════════════════
#  READ VIEWS
# ══════════════════════════════════════════════

def get_stats(now=None):
    """Active member count and paid revenue (all time, this calendar month)."""
    now = now or datetime.now(timezone.utc)
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    subscriptions = Subscription.query.all()
    active_count = sum(1 for s in subscriptions if s.status in Subscription.ACTIVE_STATUSES)

    paid = [inv for inv in Invoice.query.all() if inv.status == "paid"]
    all_time = sum(inv.amount_paid_cents or 0 for inv in paid)
    this_month = sum(
        inv.amount_paid_cents or 0
        for inv in paid
        if _as_utc(inv.created_at) >= start_of_month
    )

    return {
        "active_member_count": active_count,
        "all_time_total_cents": all_time,
        "this_month_total_cents": this_month,
    }


def list_members(active=True):
    """Members filtered by is_active, each with subscription and paid total."""
    members = Member.query.filter_by(is_active=active).order_by(Member.created_at.desc()).all()
    subs_by_member = {s.member_id: s for s in Subscription.query.all()}
    totals = _paid_totals_by_member(Invoice.query.all())

    rows = []
    for member in members:
        sub = subs_by_member.get(member.id)
        row = member.to_dict()
        row["subscription"] = sub.to_dict() if sub else None
        row["total_paid_cents"] = totals.get(member.id, 0)
        rows.append(row)
    return rows


def list_past_due():
    subs = Subscription.query.filter_by(status="past_due").all()
    return [
        {
            "member_id": sub.member_id,
            "email": sub.member.email if sub.member else None,
            "current_amount_cents": sub.current_amount_cents,
            "updated_at": sub.updated_at.isoformat() if sub.updated_at else None,
        }
        for sub in subs
    ]


def get_member_detail(member_id):
    """Profile, subscription, and the full transaction ledger (newest first)."""
    member = db.session.get(Member, member_id)
    if member is None:
        raise NotFoundError("Member not found")

    sub = Subscription.query.filter_by(member_id=member_id).first()
    invoices = (
        Invoice.query.filter_by(member_id=member_id)
        .order_by(Invoice.created_at.desc())
        .all()
    )
    return {
        "profile": member.to_dict(),
        "subscription": sub.to_dict() if sub else None,
        "transactions": [inv.to_dict() for inv in invoices],
        "total_paid_cents": sum(
            inv.amount_paid_cents or 0 for inv in invoices if inv.status == "paid"
        ),
    }


def categorize_invites():
    """Split active non-admin members by onboarding stage.

    pending  — has not set a password yet
    awaiting — set up, but no active/trialing subscription
    active   — contributing
    """
    members = Member.query.filter_by(is_active=True).order_by(Member.created_at.desc()).all()
    subs_by_member = {s.member_id: s for s in Subscription.query.all()}

    pending, awaiting, active = [], [], []
    for member in members:
        if member.is_admin:
            continue
        sub = subs_by_member.get(member.id)
        row = member.to_dict()
        row["subscription"] = sub.to_dict() if sub else None
        if not member.setup_completed:
            pending.append(row)
        elif not sub or sub.status not in Subscription.ACTIVE_STATUSES:
            awaiting.append(row)
        else:
            active.append(row)

    return {"pending": pending, "awaiting": awaiting, "active": active}


# ══════════════════════════════════════════════
#  MUTATIONS
# ══════════════════════════════════════════════

def deactivate_member(processor, actor, member_id):
    """Deactivate a member and cancel their Stripe subscription.

    Stripe cancellation is best-effort: a failure is logged and the local
    deactivation still happens.
    """
    if not member_id:
        raise ValidationError("User ID is required")
    if member_id == actor.id:
        raise ConflictError("Cannot deactivate yourself")

    member = db.session.get(Member, member_id)
    if member is None:
        raise NotFoundError("User not found")
    if member.is_admin:
        raise ConflictError("Cannot deactivate an admin")

    sub = Subscription.query.filter_by(member_id=member_id).first()
    if sub and sub.stripe_subscription_id:
        try:
            processor.cancel_subscription(sub.stripe_subscription_id)
            logger.info(f"Stripe subscription cancelled: {sub.stripe_subscription_id}")
        except Exception as e:
            # Might already be cancelled on Stripe's side
            logger.error(
                f"Stripe cancellation failed for {sub.stripe_subscription_id}: {e}"
            )

    member.is_active = False
    if sub:
        sub.status = "canceled"
        sub.updated_at = datetime.now(timezone.utc)
    db.session.commit()

    logger.info(f"Member {member_id} deactivated by {actor.id}")
    return member


def reactivate_member(actor, member_id):
    if not member_id:
        raise ValidationError("User ID is required")

    member = db.session.get(Member, member_id)
    if member is None:
        raise NotFoundError("User not found")

    member.is_active = True
    db.session.commit()

    logger.info(f"Member {member_id} reactivated by {actor.id}")
    return member


def invite_member(identity, actor, email, resend=False):
    """Invite a new member by email, or resend to an existing identity.

    Returns (message, user_id); user_id is None for a resend.
    """
    email = (email or "").strip().lower()
    if not email:
        raise ValidationError("Email is required")
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")

    redirect_to = f"{current_app.config['APP_BASE_URL']}/reset-password"
    existing = identity.find_user_by_email(email)

    if existing and not resend:
        raise ConflictError("A user with this email already exists")

    if existing and resend:
        member = db.session.get(Member, existing.get("id"))
        if member is not None and member.setup_completed:
            raise ConflictError("This user has already completed setup")
        try:
            identity.send_recovery(email, redirect_to)
        except IdentityError as e:
            raise ValidationError(f"Failed to resend invitation: {e}")
        logger.info(f"Invitation resent to {email} by {actor.id}")
        return "Invitation resent successfully", None

    try:
        user = identity.invite_user(
            email,
            redirect_to,
            data={
                "invited_by": actor.id,
                "invited_at": datetime.now(timezone.utc).isoformat(),
            },
        )
    except IdentityError as e:
        raise ValidationError(f"Failed to invite user: {e}")

    user_id = user.get("id")
    if user_id and db.session.get(Member, user_id) is None:
        db.session.add(Member(id=user_id, email=email, role="member"))
        db.session.commit()

    logger.info(f"Invitation sent to {email} by {actor.id} (user {user_id})")
    return "Invitation sent successfully", user_id
