# Overview: Flask API routes for sale settlement; parses input and returns JSON responses.

# backend/hwpos/routes/sales.py
"""
Sales API Routes

WHY: Checkout front end posts a priced cart plus a payment split; the
settlement engine does the rest.

DESIGN:
- The acting cashier is g.actor_id (X-User-Id)
- Lines without unit_price_cents are priced from the product catalog
- Amounts are integer cents in and out
- allow_over_limit is honored only for an approver in AR_OVER_LIMIT_APPROVER_IDS
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import HwposError, ValidationError
from ..services import settlement_service
from ..services.collaborators import lookup_unit_price
from ..decorators import require_actor, error_response, over_limit_override


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _priced_lines(raw_lines) -> list[dict]:
    if not isinstance(raw_lines, list):
        raise ValidationError("lines must be a list")
    lines = []
    for raw in raw_lines:
        if not isinstance(raw, dict):
            raise ValidationError("each line must be an object")
        line = dict(raw)
        if line.get("unit_price_cents") is None and line.get("product_id") is not None:
            line["unit_price_cents"] = lookup_unit_price(line["product_id"])
        lines.append(line)
    return lines


def _legs(raw_legs) -> list[dict]:
    if raw_legs is None:
        return []
    if not isinstance(raw_legs, list) or not all(isinstance(leg, dict) for leg in raw_legs):
        raise ValidationError("legs must be a list of objects")
    return raw_legs


@sales_bp.post("/")
@sales_bp.post("")
@require_actor
def settle_sale_route():
    """
    Settle a sale.

    Request body:
    {
        "shift_id": 1,
        "customer_id": 3,              (required for AR legs)
        "tax_mode": "VAT",             (VAT, NON_VAT, EWT)
        "sale_number": "S-MAIN-000123" (optional idempotency key)
        "lines": [{"product_id": 10, "quantity": 2, "unit_price_cents": 56000, "discount_percent": 0}],
        "legs": [{"method_code": "CASH", "amount_cents": 120000}]
    }

    Returns 201 with the committed sale, 4xx with the rejection reason.
    """
    try:
        data = request.get_json(silent=True) or {}

        shift_id = data.get("shift_id")
        if not shift_id:
            return jsonify({"error": "shift_id required"}), 400

        sale = settlement_service.settle(
            _priced_lines(data.get("lines") or []),
            _legs(data.get("legs")),
            cashier_id=g.actor_id,
            shift_id=shift_id,
            customer_id=data.get("customer_id"),
            tax_mode=(data.get("tax_mode") or "VAT").upper(),
            sale_number=data.get("sale_number"),
            allow_over_limit=over_limit_override(data.get("allow_over_limit")),
            notes=data.get("notes"),
        )
        return jsonify({"sale": sale.to_dict()}), 201

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to settle sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/quote")
@require_actor
def quote_route():
    """Totals and split check for the payment dialog. Writes nothing."""
    try:
        data = request.get_json(silent=True) or {}
        result = settlement_service.quote(
            _priced_lines(data.get("lines") or []),
            _legs(data.get("legs")),
            (data.get("tax_mode") or "VAT").upper(),
            data.get("customer_id"),
            allow_over_limit=over_limit_override(data.get("allow_over_limit")),
        )
        return jsonify(result), 200

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to quote sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/")
@sales_bp.get("")
@require_actor
def list_sales_route():
    """List sales, most recent first. Filters: shift_id, customer_id, status, limit."""
    sales = settlement_service.list_sales(
        shift_id=request.args.get("shift_id", type=int),
        customer_id=request.args.get("customer_id", type=int),
        status=request.args.get("status"),
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"sales": [s.to_dict(include_lines=False) for s in sales]}), 200


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    sale = settlement_service.get_sale(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/number/<sale_number>")
@require_actor
def get_sale_by_number_route(sale_number: str):
    sale = settlement_service.get_sale_by_number(sale_number)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/void")
@require_actor
def void_sale_route(sale_id: int):
    """
    Void a completed sale while its shift is still open.

    Request body:
    {
        "reason": "Customer changed mind"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            return jsonify({"error": "reason required"}), 400

        sale = settlement_service.void_sale(sale_id, user_id=g.actor_id, reason=reason)
        return jsonify({"sale": sale.to_dict()}), 200

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/refund")
@require_actor
def refund_sale_route(sale_id: int):
    """
    Refund a whole completed sale (customer return).

    Request body:
    {
        "reason": "Wrong size, returned unopened",
        "shift_id": 4                  (optional; defaults to the actor's active shift)
    }

    Cash goes out of the refunding shift's drawer; AR is reversed.
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = data.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            return jsonify({"error": "reason required"}), 400

        sale = settlement_service.refund_sale(
            sale_id,
            user_id=g.actor_id,
            reason=reason,
            shift_id=data.get("shift_id"),
        )
        return jsonify({"sale": sale.to_dict()}), 200

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify({"error": "Internal server error"}), 500
