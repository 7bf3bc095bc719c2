# roster_app/routes/events.py

"""
Event JSON API: CRUD, lifecycle status and donor list generation
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import current_app, jsonify
from flask_login import current_user, login_required

from roster_app.errors import NotFoundError, StateConflictError, ValidationError
from roster_app.models import Event, EventStatus, db
from roster_app.services import ListGenerator
from roster_app.utils.request_helpers import get_json_body, get_pagination, parse_bool

REQUIRED_EVENT_FIELDS = ("name", "type", "date", "location")
_TIMELINE_FIELDS = ("timeline_list_generation_date", "timeline_review_deadline", "timeline_invitation_date")
_CRITERIA_KEYS = ("min_giving_level", "focus", "city", "size")


def _parse_datetime(field, value):
    if value in (None, ""):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"{field} must be an ISO-8601 date.", details={field: value}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_event_payload(data, *, partial=False):
    """Translate a JSON body into Event column values"""
    if not partial:
        missing = [field for field in REQUIRED_EVENT_FIELDS if not data.get(field)]
        if missing:
            raise ValidationError("Missing required event fields.", details={"fields": missing})

    values = {}
    for field in ("name", "location", "focus", "criteria_city"):
        if field in data:
            values[field] = (str(data[field]).strip() or None) if data[field] is not None else None
    if "type" in data:
        values["event_type"] = str(data["type"]).strip()
    if "date" in data:
        values["date"] = _parse_datetime("date", data["date"])
        if values["date"] is None:
            raise ValidationError("date is required.")
    for field in _TIMELINE_FIELDS:
        if field in data:
            values[field] = _parse_datetime(field, data[field])
    if "capacity" in data:
        capacity = data["capacity"]
        if capacity in (None, ""):
            values["capacity"] = None
        else:
            try:
                values["capacity"] = int(capacity)
            except (TypeError, ValueError) as exc:
                raise ValidationError("capacity must be an integer.", details={"capacity": capacity}) from exc
            if values["capacity"] <= 0:
                raise ValidationError("capacity must be positive.", details={"capacity": capacity})
    if "criteria_min_giving_level" in data:
        raw_level = data["criteria_min_giving_level"]
        try:
            level = Decimal(str(raw_level if raw_level is not None else 0))
        except InvalidOperation as exc:
            raise ValidationError(
                "criteria_min_giving_level must be a number.", details={"criteria_min_giving_level": raw_level}
            ) from exc
        if not level.is_finite() or level < 0:
            raise ValidationError(
                "criteria_min_giving_level must be zero or greater.",
                details={"criteria_min_giving_level": raw_level},
            )
        values["criteria_min_giving_level"] = level
    return values


def _get_event_or_404(event_id):
    event = Event.find_by_id(event_id)
    if event is None:
        raise NotFoundError(f"Event {event_id} not found.", details={"event_id": event_id})
    return event


def register_event_routes(app):
    """Register event routes"""

    @app.route("/api/events", methods=["GET"])
    @login_required
    def events_list():
        page, page_size = get_pagination()
        query = Event.query.order_by(Event.date.desc(), Event.id.desc())
        total = query.count()
        events = query.offset((page - 1) * page_size).limit(page_size).all()
        return jsonify(
            {"events": [event.to_dict() for event in events], "page": page, "limit": page_size, "total_count": total}
        )

    @app.route("/api/events", methods=["POST"])
    @login_required
    def events_create():
        values = _parse_event_payload(get_json_body())
        values["created_by_user_id"] = current_user.id
        event, error = Event.safe_create(**values)
        if error:
            raise StateConflictError(error)
        current_app.logger.info(f"Event {event.id} created by {current_user.username}", extra={"event_id": event.id})
        return jsonify({"event": event.to_dict()}), 201

    @app.route("/api/events/<int:event_id>", methods=["GET"])
    @login_required
    def events_detail(event_id):
        event = _get_event_or_404(event_id)
        return jsonify({"event": event.to_dict()})

    @app.route("/api/events/<int:event_id>", methods=["PUT"])
    @login_required
    def events_update(event_id):
        event = _get_event_or_404(event_id)
        data = get_json_body()
        if "status" in data:
            raise ValidationError("Use PUT /api/events/<id>/status to change the event status.")
        values = _parse_event_payload(data, partial=True)
        success, error = event.safe_update(**values)
        if not success:
            raise StateConflictError(error)
        return jsonify({"event": event.to_dict()})

    @app.route("/api/events/<int:event_id>", methods=["DELETE"])
    @login_required
    def events_delete(event_id):
        event = _get_event_or_404(event_id)
        success, error = event.safe_delete()
        if not success:
            raise StateConflictError(error)
        current_app.logger.info(f"Event {event_id} deleted", extra={"event_id": event_id})
        return jsonify({"message": "Event deleted", "event_id": event_id})

    @app.route("/api/events/<int:event_id>/status", methods=["PUT"])
    @login_required
    def events_update_status(event_id):
        event = _get_event_or_404(event_id)
        data = get_json_body()
        try:
            new_status = EventStatus.from_value(data.get("status"))
        except ValueError as exc:
            raise ValidationError(
                str(exc), details={"allowed_statuses": [status.value for status in EventStatus]}
            ) from exc

        previous = event.status
        try:
            event.transition_to(new_status)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        current_app.logger.info(
            f"Event {event_id} moved from {previous.value} to {new_status.value}",
            extra={"event_id": event_id, "from_status": previous.value, "to_status": new_status.value},
        )
        return jsonify({"event": event.to_dict()})

    @app.route("/api/events/<int:event_id>/list", methods=["POST"])
    @login_required
    def events_generate_list(event_id):
        data = get_json_body()
        overrides = {key: data[key] for key in _CRITERIA_KEYS if key in data}
        auto_exclude = data.get("auto_exclude")
        donor_list = ListGenerator().generate(
            event_id,
            generated_by=current_user.id,
            criteria_overrides=overrides,
            confirm_regenerate=parse_bool(data.get("confirm_regenerate")),
            auto_exclude=None if auto_exclude is None else parse_bool(auto_exclude),
        )
        return jsonify({"donor_list": donor_list.to_dict()}), 201
