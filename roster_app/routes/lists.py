# roster_app/routes/lists.py

"""
Donor list JSON API: review transitions, membership edits and auto-exclusion
"""

from flask import jsonify, request
from flask_login import current_user, login_required

from roster_app.errors import ValidationError
from roster_app.models import DonorList, ReviewStatus
from roster_app.services import DonorListReviewService
from roster_app.utils.request_helpers import get_json_body, get_pagination


def register_list_routes(app):
    """Register donor list routes"""

    @app.route("/api/lists", methods=["GET"])
    @login_required
    def lists_index():
        page, page_size = get_pagination()
        query = DonorList.query
        review_status = (request.args.get("review_status") or "").strip().lower()
        if review_status:
            try:
                query = query.filter(DonorList.review_status == ReviewStatus(review_status))
            except ValueError as exc:
                raise ValidationError(
                    "Invalid review_status filter.",
                    details={"allowed_statuses": [value.value for value in ReviewStatus]},
                ) from exc
        total = query.count()
        lists = query.order_by(DonorList.id.desc()).offset((page - 1) * page_size).limit(page_size).all()
        return jsonify(
            {
                "lists": [donor_list.to_dict() for donor_list in lists],
                "page": page,
                "limit": page_size,
                "total_count": total,
            }
        )

    @app.route("/api/lists/<int:list_id>", methods=["GET"])
    @login_required
    def lists_detail(list_id):
        donor_list = DonorListReviewService().get_list(list_id)
        return jsonify({"donor_list": donor_list.to_dict(include_memberships=True)})

    @app.route("/api/lists/<int:list_id>", methods=["DELETE"])
    @login_required
    def lists_delete(list_id):
        DonorListReviewService().delete_list(list_id)
        return jsonify({"message": "Donor list deleted", "list_id": list_id})

    @app.route("/api/lists/<int:list_id>/auto-exclude", methods=["POST"])
    @login_required
    def lists_auto_exclude(list_id):
        service = DonorListReviewService()
        outcomes = service.run_auto_exclusion(list_id)
        donor_list = service.get_list(list_id)
        return jsonify(
            {
                "auto_excluded": [
                    {"membership_id": outcome.membership_id, "donor_id": outcome.donor_id, "reason": outcome.reason}
                    for outcome in outcomes
                ],
                "donor_list": donor_list.to_dict(),
            }
        )

    @app.route("/api/lists/<int:list_id>/approve-pending", methods=["POST"])
    @login_required
    def lists_approve_pending(list_id):
        service = DonorListReviewService()
        approved = service.approve_all_pending(list_id, reviewer_id=current_user.id)
        return jsonify({"approved": approved, "donor_list": service.get_list(list_id).to_dict()})

    @app.route("/api/lists/<int:list_id>/donors", methods=["POST"])
    @login_required
    def lists_add_donors(list_id):
        data = get_json_body()
        donor_ids = data.get("donor_ids")
        if not isinstance(donor_ids, list):
            raise ValidationError("donor_ids must be a list of donor ids.")
        try:
            donor_ids = [int(donor_id) for donor_id in donor_ids]
        except (TypeError, ValueError) as exc:
            raise ValidationError("donor_ids must contain integers.") from exc
        service = DonorListReviewService()
        added = service.add_members(list_id, donor_ids)
        return (
            jsonify(
                {
                    "added": [membership.to_dict() for membership in added],
                    "donor_list": service.get_list(list_id).to_dict(),
                }
            ),
            201,
        )

    @app.route("/api/lists/<int:list_id>/memberships/<int:membership_id>", methods=["PUT"])
    @login_required
    def lists_update_membership(list_id, membership_id):
        data = get_json_body()
        service = DonorListReviewService()
        membership = service.apply_action(
            list_id,
            membership_id,
            data.get("action"),
            reviewer_id=current_user.id,
            reason=data.get("reason"),
            comments=data.get("comments"),
        )
        return jsonify({"membership": membership.to_dict(), "donor_list": service.get_list(list_id).to_dict()})

    @app.route("/api/lists/<int:list_id>/memberships/<int:membership_id>", methods=["DELETE"])
    @login_required
    def lists_remove_membership(list_id, membership_id):
        service = DonorListReviewService()
        service.remove_member(list_id, membership_id)
        return jsonify({"message": "Donor removed from list", "donor_list": service.get_list(list_id).to_dict()})
