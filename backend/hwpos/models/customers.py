from __future__ import annotations

from ..extensions import db
from hwpos.time_utils import to_utc_z


class CustomerAccount(db.Model):
    """
    Store-credit (AR) customer account.

    WHY: Contractors and regular customers buy on account up to a credit
    limit and settle later.

    CACHED PROJECTION: current_balance_cents is derived from the
    ar_transactions log (opening balance + sum of deltas). The log is the
    source of truth; ar_ledger_service keeps the two in step and
    reconciliation_service detects drift.
    """
    __tablename__ = "customer_accounts"
    __table_args__ = (
        db.UniqueConstraint("customer_code", name="uq_customer_accounts_code"),
        db.CheckConstraint("credit_limit_cents >= 0", name="credit_limit_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(32), nullable=False)
    customer_name = db.Column(db.String(128), nullable=False)
    contact_person = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)  # fixed at creation
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_credit_cents(self) -> int:
        return self.credit_limit_cents - self.current_balance_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_code": self.customer_code,
            "customer_name": self.customer_name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "credit_limit_cents": self.credit_limit_cents,
            "opening_balance_cents": self.opening_balance_cents,
            "current_balance_cents": self.current_balance_cents,
            "available_credit_cents": self.available_credit_cents,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ARTransaction(db.Model):
    """
    Append-only receivables log.

    TRANSACTION TYPES:
    - CHARGE: Sale put on account (+amount); sale_id required
    - PAYMENT: Customer paid down the balance (-amount)
    - REVERSAL: Cancels one earlier entry (negated delta of that entry)

    ORDERING: sequence is 1-based and dense per customer; balance_after_cents
    of entry N equals balance_after_cents of entry N-1 plus this entry's delta.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "ar_transactions"
    __table_args__ = (
        db.UniqueConstraint("customer_account_id", "sequence", name="uq_ar_transactions_customer_sequence"),
        db.CheckConstraint("amount_cents > 0", name="amount_positive"),
        db.Index("ix_ar_transactions_customer_occurred", "customer_account_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_account_id = db.Column(db.Integer, db.ForeignKey("customer_accounts.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # CHARGE, PAYMENT, REVERSAL
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reverses_transaction_id = db.Column(db.Integer, db.ForeignKey("ar_transactions.id"), nullable=True, unique=True)

    # Payment excess not applied to the balance (returned to customer outside the ledger)
    unapplied_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=True)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.String(255), nullable=True)
    processed_by_user_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer_account = db.relationship("CustomerAccount", backref=db.backref("ar_transactions", lazy=True))
    reverses = db.relationship("ARTransaction", remote_side=[id], uselist=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_account_id": self.customer_account_id,
            "sequence": self.sequence,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "sale_id": self.sale_id,
            "reverses_transaction_id": self.reverses_transaction_id,
            "unapplied_cents": self.unapplied_cents,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "notes": self.notes,
            "processed_by_user_id": self.processed_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
