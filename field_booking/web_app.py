from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable
import logging

from flask import Flask, jsonify, request

from .config import Settings
from .errors import (
    AuthorizationError,
    CANCEL_REFUSED_MESSAGE,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from .lifecycle import ReservationService
from .notifications import NotificationDispatcher, Notifier, ResendNotifier
from .slots import MAX_DURATION_HOURS, MIN_DURATION_HOURS
from .yaml_store import ReservationYamlRepository

logger = logging.getLogger(__name__)

BODY_NOT_OBJECT_MESSAGE = "Request body must be a JSON object"


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    notifier: Notifier | None = None,
    settings: Settings | None = None,
) -> Flask:
    app = Flask(__name__)
    config = settings or Settings.from_env()
    repository = ReservationYamlRepository(
        data_dir if data_dir is not None else config.data_dir,
        lock_timeout=config.storage_lock_timeout,
    )
    dispatcher = NotificationDispatcher(
        notifier or ResendNotifier(config.resend_api_key, config.email_from, config.notify_recipients),
        send_timeout=config.notify_timeout,
    )
    service = ReservationService(repository, dispatcher=dispatcher, now_provider=now_provider)
    app.extensions["field_booking"] = service

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/healthz")
    def healthz() -> Any:
        return jsonify({"ok": True})

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        date_key = request.args.get("date") or None
        try:
            records = service.list_reservations(date_key)
        except ValidationError as error:
            return jsonify({"error": str(error)}), 400
        except Exception as error:
            logger.exception("Error in GET /api/reservations")
            return jsonify({"error": "Failed to fetch reservations", "details": str(error)}), 500

        return jsonify({"reservations": [record.to_dict() for record in records]})

    @app.get("/api/slots")
    def list_slots() -> Any:
        date_key = str(request.args.get("date", "")).strip()
        try:
            duration = int(request.args.get("duration", ""))
        except ValueError:
            return jsonify({"error": "duration must be an integer number of hours"}), 400
        if not MIN_DURATION_HOURS <= duration <= MAX_DURATION_HOURS:
            return jsonify({"error": f"duration must be between {MIN_DURATION_HOURS} and {MAX_DURATION_HOURS} hours"}), 400

        try:
            slots = service.available_slots(date_key, duration)
        except ValidationError as error:
            return jsonify({"error": str(error)}), 400
        except Exception as error:
            logger.exception("Error in GET /api/slots")
            return jsonify({"error": "Failed to compute available slots", "details": str(error)}), 500

        return jsonify({"date": date_key, "duration": duration, "slots": [slot.to_dict() for slot in slots]})

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        payload = _json_object()
        if payload is None:
            return jsonify({"error": BODY_NOT_OBJECT_MESSAGE}), 400
        try:
            created = service.create_reservation(
                date_key=_text(payload.get("date")),
                start=_text(payload.get("start")),
                end=_text(payload.get("end")),
                title=_text(payload.get("title")) or None,
                customer_name=_text(payload.get("customerName")),
                customer_phone=_text(payload.get("customerPhone")),
                customer_email=_text(payload.get("customerEmail")) or None,
            )
        except ValidationError as error:
            return jsonify({"error": str(error)}), 400
        except ConflictError as error:
            return jsonify({"error": str(error)}), 409
        except Exception as error:
            logger.exception("Error in POST /api/reservations")
            return jsonify({"error": "Failed to create reservation", "details": str(error)}), 500

        return jsonify({"reservation": created.to_dict(), "message": "Reservation created successfully"}), 201

    @app.delete("/api/reservations")
    def cancel_reservation() -> Any:
        reservation_id = str(request.args.get("id", "")).strip()
        if not reservation_id:
            return jsonify({"error": "Missing reservation ID"}), 400

        payload = _json_object()
        if payload is None:
            return jsonify({"error": BODY_NOT_OBJECT_MESSAGE}), 400
        phone = request.args.get("phone") or _text(payload.get("customerPhone"))
        try:
            service.cancel_reservation(reservation_id, phone)
        except ValidationError as error:
            return jsonify({"error": str(error)}), 400
        except (NotFoundError, AuthorizationError):
            return jsonify({"error": CANCEL_REFUSED_MESSAGE}), 403
        except Exception as error:
            logger.exception("Error in DELETE /api/reservations")
            return jsonify({"error": "Failed to delete reservation", "details": str(error)}), 500

        return jsonify({"message": "Reservation deleted successfully"})

    return app


def _json_object() -> dict[str, Any] | None:
    """Return the JSON body as a dict, {} when there is none, or None when it is not an object."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        return None
    return payload


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
