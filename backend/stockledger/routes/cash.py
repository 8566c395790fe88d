# Overview: Flask API routes for cash sessions; parses input and returns JSON responses.

# backend/stockledger/routes/cash.py
"""
Cash Session API Routes

WHY: Drawer custody and end-of-shift reconciliation.

DESIGN:
- Session lifecycle: open -> count (any number of times) -> close
- Closed sessions are immutable
- POST /api/cash with {"action": "open" | "count" | "close"} mirrors the
  single-endpoint form used by the till; the explicit endpoints below do the
  same thing
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import cash_session_service
from ..services.errors import LedgerError, NotFoundError
from ..validation import (
    OpenSessionRequest,
    CountCashRequest,
    CloseSessionRequest,
    optional_int,
)


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _error(e: LedgerError):
    return jsonify(e.to_dict()), e.status_code


def _open(payload):
    req = OpenSessionRequest.from_payload(payload)
    session = cash_session_service.open_session(
        opening_amount_cents=req.opening_amount_cents,
        cashier_name=req.cashier_name,
        notes=req.notes,
    )
    return jsonify({"session": session.to_dict()}), 201


def _count(session_id: int, payload):
    req = CountCashRequest.from_payload(payload)
    session = cash_session_service.count_cash(
        session_id, actual_amount_cents=req.actual_amount_cents, notes=req.notes
    )
    return jsonify({"session": session.to_dict()}), 200


def _close(session_id: int, payload):
    req = CloseSessionRequest.from_payload(payload)
    session = cash_session_service.close_session(
        session_id,
        actual_amount_cents=req.actual_amount_cents,
        closing_amount_cents=req.closing_amount_cents,
        notes=req.notes,
    )
    return jsonify({"session": session.to_dict()}), 200


@cash_bp.get("/current")
@cash_bp.get("")
def current_session_route():
    """Current session (open or counted), or null."""
    session = cash_session_service.get_current_session()
    return jsonify({"session": session.to_dict() if session else None}), 200


@cash_bp.post("")
def session_action_route():
    """
    Request body:
    {
        "action": "open" | "count" | "close",
        "session_id": 3,                (count/close; defaults to the current session)
        "opening_amount_cents": 10000,  (open)
        "actual_amount_cents": 13900    (count/close)
    }
    """
    try:
        payload = request.get_json(silent=True) or {}
        action = payload.get("action")

        if action == "open":
            return _open(payload)

        if action in ("count", "close"):
            session_id = optional_int(payload, "session_id", minimum=1)
            if session_id is None:
                current = cash_session_service.get_current_session()
                if current is None:
                    raise NotFoundError("no open cash session")
                session_id = current.id
            if action == "count":
                return _count(session_id, payload)
            return _close(session_id, payload)

        return jsonify({"error": "action must be one of: open, count, close"}), 400

    except LedgerError as e:
        return _error(e)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process cash session action")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/open")
def open_session_route():
    try:
        return _open(request.get_json(silent=True))
    except LedgerError as e:
        return _error(e)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/<int:session_id>/count")
def count_cash_route(session_id: int):
    try:
        return _count(session_id, request.get_json(silent=True))
    except LedgerError as e:
        return _error(e)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to count cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/<int:session_id>/close")
def close_session_route(session_id: int):
    try:
        return _close(session_id, request.get_json(silent=True))
    except LedgerError as e:
        return _error(e)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/<int:session_id>/recalculate")
def recalculate_route(session_id: int):
    """Administrative repair of the cached totals."""
    try:
        session = cash_session_service.recalculate_totals(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except LedgerError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to recalculate cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/<int:session_id>")
def get_session_route(session_id: int):
    try:
        session = cash_session_service.get_session(session_id)
        return jsonify({"session": session.to_dict()}), 200
    except LedgerError as e:
        return _error(e)


@cash_bp.get("/history")
def session_history_route():
    limit = request.args.get("limit", default=10, type=int)
    sessions = cash_session_service.get_session_history(limit=max(1, min(limit, 100)))
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200
