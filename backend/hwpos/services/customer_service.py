# Overview: Service-layer operations for AR customer accounts; create, update and look up.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import CustomerAccount


# Fields a PUT may change. Balance fields move only through the AR ledger.
UPDATABLE_FIELDS = (
    "customer_name",
    "contact_person",
    "email",
    "phone",
    "address",
    "credit_limit_cents",
    "is_active",
    "notes",
)


def _require_non_negative(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    return value


def create_customer(
    *,
    customer_code: str,
    customer_name: str,
    credit_limit_cents: int = 0,
    opening_balance_cents: int = 0,
    contact_person: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> CustomerAccount:
    """
    Open a store-credit account.

    The opening balance is fixed here and is the starting point every
    ledger replay begins from.
    """
    customer_code = (customer_code or "").strip().upper()
    customer_name = (customer_name or "").strip()
    if not customer_code or not customer_name:
        raise ValidationError("customer_code and customer_name are required")

    _require_non_negative("credit_limit_cents", credit_limit_cents)
    if isinstance(opening_balance_cents, bool) or not isinstance(opening_balance_cents, int):
        raise ValidationError("opening_balance_cents must be an integer")

    existing = db.session.query(CustomerAccount).filter_by(customer_code=customer_code).first()
    if existing:
        raise ValidationError(f"Customer code '{customer_code}' already exists")

    customer = CustomerAccount(
        customer_code=customer_code,
        customer_name=customer_name,
        contact_person=contact_person,
        email=email,
        phone=phone,
        address=address,
        credit_limit_cents=credit_limit_cents,
        opening_balance_cents=opening_balance_cents,
        current_balance_cents=opening_balance_cents,
        is_active=True,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(customer)
    db.session.commit()
    return customer


def get_customer(customer_id: int) -> CustomerAccount | None:
    return db.session.get(CustomerAccount, customer_id)


def require_customer(customer_id: int) -> CustomerAccount:
    customer = get_customer(customer_id)
    if not customer:
        raise NotFoundError(f"Customer account {customer_id} not found")
    return customer


def get_customer_by_code(customer_code: str) -> CustomerAccount | None:
    return (
        db.session.query(CustomerAccount)
        .filter_by(customer_code=(customer_code or "").strip().upper())
        .first()
    )


def list_customers(*, search: str | None = None, active_only: bool = True, limit: int = 100) -> list[CustomerAccount]:
    q = db.session.query(CustomerAccount)
    if active_only:
        q = q.filter(CustomerAccount.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            CustomerAccount.customer_code.ilike(like),
            CustomerAccount.customer_name.ilike(like),
        ))
    return q.order_by(CustomerAccount.customer_name).limit(limit).all()


def update_customer(customer_id: int, **changes) -> CustomerAccount:
    """
    Update contact details, credit limit or active flag.

    Lowering the limit below the current balance is allowed; it only blocks
    further AR charges.
    """
    customer = require_customer(customer_id)

    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not updatable: {', '.join(sorted(unknown))}")

    if "credit_limit_cents" in changes:
        _require_non_negative("credit_limit_cents", changes["credit_limit_cents"])
    if "customer_name" in changes and not (changes["customer_name"] or "").strip():
        raise ValidationError("customer_name cannot be blank")
    if "is_active" in changes and not isinstance(changes["is_active"], bool):
        raise ValidationError("is_active must be true or false", details={"is_active": changes["is_active"]})

    for field_name, value in changes.items():
        setattr(customer, field_name, value)

    db.session.commit()
    return customer
