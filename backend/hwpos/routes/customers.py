# Overview: Flask API routes for AR customer accounts and their ledger.

# backend/hwpos/routes/customers.py
"""
Customer Account API Routes

WHY: Back office opens store-credit accounts, takes payments against them
and reviews the ledger.

DESIGN:
- Balances move only through the AR ledger (charges come from sales)
- Ledger entries are never edited; mistakes get a REVERSAL
- recompute with repair=true is a deliberate manual reconciliation
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import HwposError
from ..services import ar_ledger_service, customer_service
from ..decorators import require_actor, error_response


customers_bp = Blueprint("customer_accounts", __name__, url_prefix="/api/customer-accounts")


@customers_bp.post("/")
@customers_bp.post("")
@require_actor
def create_customer_route():
    """
    Open an AR customer account.

    Request body:
    {
        "customer_code": "C-0001",
        "customer_name": "Dela Cruz Construction",
        "credit_limit_cents": 5000000,
        "opening_balance_cents": 0,
        "contact_person": "...", "email": "...", "phone": "...", "address": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        customer = customer_service.create_customer(
            customer_code=data.get("customer_code"),
            customer_name=data.get("customer_name"),
            credit_limit_cents=data.get("credit_limit_cents", 0),
            opening_balance_cents=data.get("opening_balance_cents", 0),
            contact_person=data.get("contact_person"),
            email=data.get("email"),
            phone=data.get("phone"),
            address=data.get("address"),
            notes=data.get("notes"),
            user_id=g.actor_id,
        )
        return jsonify({"customer": customer.to_dict()}), 201

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer account")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/")
@customers_bp.get("")
@require_actor
def list_customers_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    customers = customer_service.list_customers(
        search=request.args.get("search"),
        active_only=not include_inactive,
        limit=request.args.get("limit", 100, type=int),
    )
    return jsonify({"customers": [c.to_dict() for c in customers]}), 200


@customers_bp.get("/<int:customer_id>")
@require_actor
def get_customer_route(customer_id: int):
    customer = customer_service.get_customer(customer_id)
    if not customer:
        return jsonify({"error": "Customer account not found"}), 404
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.put("/<int:customer_id>")
@require_actor
def update_customer_route(customer_id: int):
    """Update contact details, credit limit or active flag. Balances are not editable."""
    try:
        data = request.get_json(silent=True) or {}
        customer = customer_service.update_customer(customer_id, **data)
        return jsonify({"customer": customer.to_dict()}), 200

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update customer account")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/ledger")
@require_actor
def get_ledger_route(customer_id: int):
    """Ledger entries in posting order with the cached balance."""
    try:
        customer = customer_service.require_customer(customer_id)
        entries = ar_ledger_service.get_customer_ledger(customer_id)
        return jsonify({
            "customer": customer.to_dict(),
            "transactions": [tx.to_dict() for tx in entries],
        }), 200

    except HwposError as e:
        return error_response(e)


@customers_bp.post("/<int:customer_id>/payments")
@require_actor
def record_payment_route(customer_id: int):
    """
    Record a payment on account.

    Request body:
    {
        "amount_cents": 50000,
        "payment_method": "CASH",      (any method except AR)
        "reference_number": "...",     (required for non-cash methods)
        "notes": "..."
    }

    unapplied_cents in the response is change owed to the customer when
    the payment exceeded the balance (CLAMP policy).
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = ar_ledger_service.record_payment(
            customer_id,
            data.get("amount_cents"),
            data.get("notes"),
            payment_method=data.get("payment_method"),
            reference_number=data.get("reference_number"),
            user_id=g.actor_id,
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record AR payment")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/recompute")
@require_actor
def recompute_balance_route(customer_id: int):
    """
    Replay the ledger and compare with the cached balance.

    ?repair=true overwrites the cache with the replayed value.
    A mismatch without repair answers 500 with the check in details.
    """
    try:
        repair = request.args.get("repair", "false").lower() == "true"
        check = ar_ledger_service.recompute_balance(customer_id, repair=repair, user_id=g.actor_id)
        return jsonify({"check": check.to_dict()}), 200

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to recompute AR balance")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/transactions/<int:transaction_id>/reverse")
@require_actor
def reverse_transaction_route(transaction_id: int):
    """
    Reverse one ledger entry.

    Request body:
    {
        "reason": "Payment keyed twice"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        tx = ar_ledger_service.reverse_transaction(
            transaction_id,
            reason=data.get("reason") or "",
            user_id=g.actor_id,
        )
        return jsonify({"transaction": tx.to_dict()}), 201

    except HwposError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reverse AR transaction")
        return jsonify({"error": "Internal server error"}), 500
