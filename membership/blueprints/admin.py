"""Admin blueprint — /api/admin/*

Member directory, finance overview, and member management.
All routes protected by @admin_required (401 without a credential,
403 for non-admins).

Route Map:
  GET  /api/admin/stats                 — active count + revenue totals
  GET  /api/admin/members               — active members with totals
  GET  /api/admin/members/past-due      — past-due subscriptions
  GET  /api/admin/members/deactivated   — deactivated members with totals
  GET  /api/admin/members/<id>          — member detail + ledger
  GET  /api/admin/invites               — onboarding stages
  POST /api/admin/deactivate-user       — {userId}
  POST /api/admin/reactivate-user       — {userId}
  POST /api/admin/invite-user           — {email, resend?}
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from membership.decorators import admin_required
from membership.extensions import identity, limiter, processor
from membership.services import admin_service

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# ══════════════════════════════════════════════
#  READ VIEWS
# ══════════════════════════════════════════════

@admin_bp.route("/stats")
@admin_required
def stats():
    return jsonify(admin_service.get_stats())


@admin_bp.route("/members")
@admin_required
def members():
    return jsonify({"members": admin_service.list_members(active=True)})


@admin_bp.route("/members/past-due")
@admin_required
def past_due():
    return jsonify({"members": admin_service.list_past_due()})


@admin_bp.route("/members/deactivated")
@admin_required
def deactivated():
    return jsonify({"members": admin_service.list_members(active=False)})


@admin_bp.route("/members/<member_id>")
@admin_required
def member_detail(member_id):
    return jsonify(admin_service.get_member_detail(member_id))


@admin_bp.route("/invites")
@admin_required
def invites():
    return jsonify(admin_service.categorize_invites())


# ══════════════════════════════════════════════
#  MUTATIONS
# ══════════════════════════════════════════════

@admin_bp.route("/deactivate-user", methods=["POST"])
@admin_required
def deactivate_user():
    """Deactivate {userId}: cancel their subscription, block sign-in, keep history."""
    body = request.get_json(silent=True) or {}
    admin_service.deactivate_member(processor, current_user, body.get("userId"))
    return jsonify({"message": "User deactivated successfully"})


@admin_bp.route("/reactivate-user", methods=["POST"])
@admin_required
def reactivate_user():
    """Reactivate {userId}. They set up a new subscription themselves."""
    body = request.get_json(silent=True) or {}
    admin_service.reactivate_member(current_user, body.get("userId"))
    return jsonify({"message": "User reactivated successfully"})


@admin_bp.route("/invite-user", methods=["POST"])
@limiter.limit("10 per minute")
@admin_required
def invite_user():
    """Invite {email}, or resend the setup email when {resend} is true."""
    body = request.get_json(silent=True) or {}
    message, user_id = admin_service.invite_member(
        identity, current_user, body.get("email"), resend=bool(body.get("resend"))
    )
    payload = {"message": message}
    if user_id:
        payload["user_id"] = user_id
    return jsonify(payload)
