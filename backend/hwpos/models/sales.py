from __future__ import annotations

from ..extensions import db
from hwpos.time_utils import to_utc_z


class Sale(db.Model):
    """
    Settled sale document.

    WHY: A sale is written once, together with its lines and payment legs,
    inside the same transaction as its AR charge and shift totals.

    LIFECYCLE:
    - COMPLETED: Settled and committed
    - VOIDED: Compensating records posted (AR reversal, cash refund, restock)
    - REFUNDED: Whole sale returned after the fact; same compensating
      records as a void, with the cash paid out of the refunding shift

    IMMUTABLE: Amounts, lines and legs never change after commit. Voids
    and refunds only flip status and fill their audit fields.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("sale_number", name="uq_sales_sale_number"),
        db.Index("ix_sales_shift_created", "shift_id", "created_at"),
        db.Index("ix_sales_customer_created", "customer_account_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, unique, doubles as the idempotency key (e.g., "S-MAIN-000123")
    sale_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)  # COMPLETED, VOIDED, REFUNDED
    tax_mode = db.Column(db.String(16), nullable=False, default="VAT")  # VAT, NON_VAT, EWT

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)  # VATable sale (net of VAT)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    withholding_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)  # VAT-inclusive
    amount_due_cents = db.Column(db.Integer, nullable=False)  # total less withholding
    amount_tendered_cents = db.Column(db.Integer, nullable=False)
    change_due_cents = db.Column(db.Integer, nullable=False, default=0)

    customer_account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=True)
    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=False)

    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    # Void audit trail
    voided_by_user_id = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    # Refund audit trail (refund_shift_id is the drawer the cash left from)
    refunded_by_user_id = db.Column(db.Integer, nullable=True)
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_shift_id = db.Column(db.Integer, db.ForeignKey("shifts.id"), nullable=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer_account = db.relationship("CustomerAccount", backref=db.backref("sales", lazy=True))
    shift = db.relationship("Shift", foreign_keys=[shift_id], backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_number": self.sale_number,
            "status": self.status,
            "tax_mode": self.tax_mode,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "withholding_cents": self.withholding_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_due_cents": self.amount_due_cents,
            "amount_tendered_cents": self.amount_tendered_cents,
            "change_due_cents": self.change_due_cents,
            "customer_account_id": self.customer_account_id,
            "cashier_id": self.cashier_id,
            "shift_id": self.shift_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "refunded_by_user_id": self.refunded_by_user_id,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refund_reason": self.refund_reason,
            "refund_shift_id": self.refund_shift_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["legs"] = [leg.to_dict() for leg in self.legs]
        return data


class SaleLine(db.Model):
    """Individual line items on a sale, priced at settlement time."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # Catalog is external; product_id is an opaque reference
    product_id = db.Column(db.Integer, nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)  # VAT-inclusive
    discount_bps = db.Column(db.Integer, nullable=False, default=0)  # 1250 = 12.50%
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.line_number"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_bps": self.discount_bps,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
        }


class SalePaymentLeg(db.Model):
    """
    One payment-method component of a (possibly split) settlement.

    TENDER: Only CASH legs may exceed their share; the excess is the
    sale's change_due_cents.

    IMMUTABLE: Legs are the source of truth for shift totals and for the
    AR charge amount; they are never updated or deleted.
    """
    __tablename__ = "sale_payment_legs"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        db.Index("ix_sale_payment_legs_method", "method_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    leg_number = db.Column(db.Integer, nullable=False)

    method_code = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    sale = db.relationship(
        "Sale",
        backref=db.backref("legs", lazy=True, order_by="SalePaymentLeg.leg_number"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "leg_number": self.leg_number,
            "method_code": self.method_code,
            "amount_cents": self.amount_cents,
            "reference_number": self.reference_number,
            "notes": self.notes,
        }
