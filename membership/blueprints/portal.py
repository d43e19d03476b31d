"""Portal blueprint — the member's own views.

Routes:
- GET  /api/config              — contribution limits for client-side forms (public)
- GET  /api/me                  — profile, subscription, total contributed
- POST /api/me/complete-setup   — member has set their own password
- GET  /api/invoices            — payment history (?status=paid&months=N)
"""

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from membership.decorators import member_required
from membership.services import member_service

portal_bp = Blueprint("portal", __name__, url_prefix="/api")


@portal_bp.route("/config")
def config():
    return jsonify({
        "min_amount": current_app.config["MIN_AMOUNT"],
        "max_amount": current_app.config["MAX_AMOUNT"],
    })


@portal_bp.route("/me")
@member_required
def me():
    return jsonify(member_service.get_member_summary(current_user))


@portal_bp.route("/me/complete-setup", methods=["POST"])
@member_required
def complete_setup():
    member = member_service.complete_setup(current_user)
    return jsonify({"profile": member.to_dict()})


@portal_bp.route("/invoices")
@member_required
def invoices():
    months = request.args.get("months", type=int)
    rows = member_service.list_member_invoices(
        current_user,
        status=request.args.get("status"),
        months=months,
    )
    return jsonify({"invoices": [inv.to_dict() for inv in rows]})
