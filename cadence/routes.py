from __future__ import annotations

from datetime import date, datetime

from flask import Blueprint, current_app, request

from .availability import AvailabilityWindow
from .errors import NoAvailableSlot, SchedulingConflict, SchedulingError
from .intervals import TimeInterval
from .patterns import WeeklyPattern
from .scheduler import SchedulingService

bp = Blueprint("main", __name__)


def _service() -> SchedulingService:
    return SchedulingService.from_config(current_app.config)


def _parse_iso_datetime(value: str) -> datetime:
    # Wall-clock times in one reference zone; an offset is dropped, not converted.
    return datetime.fromisoformat(value).replace(tzinfo=None)


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    return date.fromisoformat(value)


def _optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return int(value)


def _optional_bool(payload: dict, key: str, default: bool = False) -> bool:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in {"true", "1", "yes", "on"}:
        return True
    if token in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean for {key}: {value!r}")


def _interval_from_payload(payload: dict) -> TimeInterval:
    start_raw = payload.get("start")
    if not start_raw:
        raise ValueError("Missing start")
    start = _parse_iso_datetime(start_raw)
    if payload.get("end"):
        return TimeInterval.between(start, _parse_iso_datetime(payload["end"]))
    duration = _optional_int(payload, "duration")
    if duration is None:
        raise ValueError("Provide either an end or a duration")
    return TimeInterval(start, duration)


@bp.errorhandler(SchedulingError)
def handle_scheduling_error(exc: SchedulingError):
    return exc.to_payload(), exc.status_code


@bp.errorhandler(ValueError)
def handle_value_error(exc: ValueError):
    return {"error": str(exc)}, 400


@bp.route("/health")
def health():
    return {"status": "ok"}


@bp.route("/classes/<int:class_id>/sessions", methods=["GET"])
def list_sessions(class_id: int):
    sessions = _service().sessions_for_class(class_id)
    return {"sessions": [session.as_dict() for session in sessions]}


@bp.route("/classes/<int:class_id>/sessions", methods=["POST"])
def create_session(class_id: int):
    payload = request.get_json(silent=True) or {}
    start_raw = payload.get("start")
    if not start_raw:
        return {"error": "Missing start"}, 400
    start = _parse_iso_datetime(start_raw)
    service = _service()
    try:
        session = service.schedule_session(
            class_id,
            start,
            duration=_optional_int(payload, "duration"),
            buffer=_optional_int(payload, "buffer"),
        )
    except SchedulingConflict as exc:
        body = exc.to_payload()
        try:
            suggestions = service.suggest_for_class(
                class_id, start, duration=_optional_int(payload, "duration")
            )
        except NoAvailableSlot:
            suggestions = []
        body["suggestions"] = [slot.as_dict() for slot in suggestions]
        return body, exc.status_code
    return {"session": session.as_dict()}, 201


@bp.route("/classes/<int:class_id>/sessions/generate", methods=["POST"])
def generate_sessions(class_id: int):
    payload = request.get_json(silent=True) or {}
    pattern = None
    if payload.get("schedule") is not None:
        pattern = WeeklyPattern.from_payload(payload["schedule"])
    result = _service().generate_sessions(
        class_id,
        start_date=_parse_date(payload.get("start_date")),
        end_date=_parse_date(payload.get("end_date")),
        pattern=pattern,
        duration=_optional_int(payload, "duration"),
        buffer=_optional_int(payload, "buffer"),
        policy=payload.get("policy") or "best-effort",
        include_past=_optional_bool(payload, "include_past"),
    )
    return result.as_dict(), 201 if result.created else 200


@bp.route("/conflicts/check", methods=["POST"])
def check_conflicts():
    payload = request.get_json(silent=True) or {}
    party_id = _optional_int(payload, "party_id")
    if party_id is None:
        return {"error": "Missing party_id"}, 400
    conflicts = _service().check_conflicts(
        party_id,
        payload.get("party_kind", "teacher"),
        _interval_from_payload(payload),
        exclude_session_id=_optional_int(payload, "exclude_session_id"),
        buffer=_optional_int(payload, "buffer"),
    )
    return {
        "has_conflict": bool(conflicts),
        "conflicts": [conflict.as_dict() for conflict in conflicts],
    }


@bp.route("/suggestions", methods=["POST"])
def suggest_alternatives():
    payload = request.get_json(silent=True) or {}
    party_id = _optional_int(payload, "party_id")
    if party_id is None:
        return {"error": "Missing party_id"}, 400
    start_raw = payload.get("preferred_start")
    duration = _optional_int(payload, "duration")
    if not start_raw or duration is None:
        return {"error": "Missing preferred_start or duration"}, 400
    availability = None
    if payload.get("availability") is not None:
        availability = [AvailabilityWindow.from_payload(entry) for entry in payload["availability"]]
    slots = _service().suggest_alternatives(
        party_id,
        payload.get("party_kind", "teacher"),
        _parse_iso_datetime(start_raw),
        duration,
        _optional_int(payload, "max_count"),
        availability=availability,
    )
    return {"suggestions": [slot.as_dict() for slot in slots]}
