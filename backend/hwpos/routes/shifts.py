# Overview: Flask API routes for cashier shifts; open, look up and close out.

# backend/hwpos/routes/shifts.py
"""
Shift API Routes

WHY: A cashier opens a shift with a float, rings sales against it, then
counts the drawer at close.

DESIGN:
- One ACTIVE shift per cashier
- Close computes expected cash and the variance; a closed shift is immutable
- Variance classification is informational (BALANCED / WARNING /
  REQUIRES_ACKNOWLEDGMENT)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import HwposError
from ..services import shift_service
from ..decorators import require_actor, error_response


shifts_bp = Blueprint("shifts", __name__, url_prefix="/api/shifts")


def _shift_payload(shift) -> dict:
    data = shift.to_dict()
    if shift.is_active:
        data["expected_cash_cents"] = shift_service.expected_cash_cents(shift)
    return data


@shifts_bp.post("/")
@shifts_bp.post("")
@require_actor
def start_shift_route():
    """
    Start a shift for the acting cashier.

    Request body:
    {
        "starting_cash_cents": 10000,
        "cashier_name": "Ana"          (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if "starting_cash_cents" not in data:
            return jsonify({"error": "starting_cash_cents required"}), 400

        shift = shift_service.start_shift(
            g.actor_id,
            data.get("starting_cash_cents"),
            cashier_name=data.get("cashier_name"),
        )
        return jsonify({"shift": _shift_payload(shift)}), 201

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/current/<int:cashier_id>")
@require_actor
def get_current_shift_route(cashier_id: int):
    shift = shift_service.get_active_shift(cashier_id)
    if not shift:
        return jsonify({"shift": None}), 200
    return jsonify({"shift": _shift_payload(shift)}), 200


@shifts_bp.get("/<int:shift_id>")
@require_actor
def get_shift_route(shift_id: int):
    shift = shift_service.get_shift(shift_id)
    if not shift:
        return jsonify({"error": "Shift not found"}), 404
    return jsonify({"shift": _shift_payload(shift)}), 200


@shifts_bp.post("/<int:shift_id>/end")
@require_actor
def end_shift_route(shift_id: int):
    """
    Close a shift with the counted drawer cash.

    Request body:
    {
        "counted_cash_cents": 54800,
        "notes": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if "counted_cash_cents" not in data:
            return jsonify({"error": "counted_cash_cents required"}), 400

        summary = shift_service.close_shift(
            shift_id,
            data.get("counted_cash_cents"),
            notes=data.get("notes"),
            closed_by=g.actor_id,
        )
        return jsonify({"summary": summary.to_dict()}), 200

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close shift")
        return jsonify({"error": "Internal server error"}), 500


@shifts_bp.get("/history/<int:cashier_id>")
@require_actor
def shift_history_route(cashier_id: int):
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 20, type=int)
    shifts, total = shift_service.get_shift_history(cashier_id, page=page, limit=limit)
    return jsonify({
        "shifts": [s.to_dict() for s in shifts],
        "page": page,
        "limit": limit,
        "total": total,
    }), 200
