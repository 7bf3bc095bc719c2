# roster_app/routes/donors.py

"""
Donor pool JSON API: listing, manual entry and edits
"""

from flask import current_app, jsonify, request
from flask_login import login_required
from sqlalchemy import or_

from roster_app.errors import DonorInUse, NotFoundError, StateConflictError, ValidationError
from roster_app.importer.contracts import coerce_payload, get_donor_field_specs
from roster_app.importer.pipeline import resolve_identity
from roster_app.models import Donor
from roster_app.utils.request_helpers import get_json_body, get_pagination, parse_bool

IDENTITY_FIELDS = ("first_name", "last_name", "organization_name")
_EDITABLE_FIELDS = frozenset(spec.name for spec in get_donor_field_specs())


def _coerce_donor_body(data):
    """Validate a JSON body against the donor contract, returning coerced values"""
    unknown = sorted(set(data) - _EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown donor fields.", details={"fields": unknown})
    values, failures = coerce_payload(data)
    if failures:
        raise ValidationError(
            "Invalid donor fields.",
            details={"fields": {name: message for name, message in failures}},
        )
    if "tags" in values:
        values["tags"] = sorted(values["tags"])
    return values


def _get_donor_or_404(donor_id):
    donor = Donor.find_by_id(donor_id)
    if donor is None:
        raise NotFoundError(f"Donor {donor_id} not found.", details={"donor_id": donor_id})
    return donor


def register_donor_routes(app):
    """Register donor routes"""

    @app.route("/api/donors", methods=["GET"])
    @login_required
    def donors_list():
        page, page_size = get_pagination()
        query = Donor.query
        search = (request.args.get("q") or "").strip()
        if search:
            term = f"%{search}%"
            query = query.filter(
                or_(
                    Donor.first_name.ilike(term),
                    Donor.last_name.ilike(term),
                    Donor.organization_name.ilike(term),
                )
            )
        city = (request.args.get("city") or "").strip()
        if city:
            query = query.filter(Donor.city.ilike(city))
        if not parse_bool(request.args.get("include_excluded"), default=True):
            query = query.filter(Donor.excluded.is_(False))

        total = query.count()
        donors = (
            query.order_by(Donor.total_donations.desc(), Donor.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return jsonify(
            {
                "donors": [donor.to_dict() for donor in donors],
                "page": page,
                "limit": page_size,
                "total_count": total,
            }
        )

    @app.route("/api/donors", methods=["POST"])
    @login_required
    def donors_create():
        values = _coerce_donor_body(get_json_body())
        identity = resolve_identity(values)
        if identity is None:
            raise ValidationError("A donor needs a first and last name or an organization name.")
        if Donor.find_by_identity_key(identity.key) is not None:
            raise StateConflictError(
                "A donor with this identity already exists.", details={"identity_key": identity.key}
            )

        values.update(identity.fields)
        donor, error = Donor.safe_create(**values)
        if error:
            raise StateConflictError(error)
        current_app.logger.info(f"Donor {donor.id} created manually", extra={"donor_id": donor.id})
        return jsonify({"donor": donor.to_dict()}), 201

    @app.route("/api/donors/<int:donor_id>", methods=["GET"])
    @login_required
    def donors_detail(donor_id):
        donor = _get_donor_or_404(donor_id)
        return jsonify({"donor": donor.to_dict()})

    @app.route("/api/donors/<int:donor_id>", methods=["PUT"])
    @login_required
    def donors_update(donor_id):
        donor = _get_donor_or_404(donor_id)
        values = _coerce_donor_body(get_json_body())

        # Identity edits replace the whole identity so the donor stays one kind.
        if any(field in values for field in IDENTITY_FIELDS):
            identity = resolve_identity({field: values.get(field) for field in IDENTITY_FIELDS})
            if identity is None:
                raise ValidationError("A donor needs a first and last name or an organization name.")
            existing = Donor.find_by_identity_key(identity.key)
            if existing is not None and existing.id != donor.id:
                raise StateConflictError(
                    "Another donor already has this identity.", details={"identity_key": identity.key}
                )
            values.update(identity.fields)
            values["identity_key"] = identity.key

        success, error = donor.safe_update(**values)
        if not success:
            raise StateConflictError(error)
        current_app.logger.info(f"Donor {donor.id} updated", extra={"donor_id": donor.id, "fields": sorted(values)})
        return jsonify({"donor": donor.to_dict()})

    @app.route("/api/donors/<int:donor_id>", methods=["DELETE"])
    @login_required
    def donors_delete(donor_id):
        donor = _get_donor_or_404(donor_id)
        if donor.is_referenced():
            raise DonorInUse(
                "Donor is on a donor list and cannot be deleted; set excluded instead.",
                details={"donor_id": donor_id},
            )
        success, error = donor.safe_delete()
        if not success:
            raise StateConflictError(error)
        current_app.logger.info(f"Donor {donor_id} deleted", extra={"donor_id": donor_id})
        return jsonify({"message": "Donor deleted", "donor_id": donor_id})
