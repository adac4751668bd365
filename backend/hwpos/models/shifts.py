from __future__ import annotations

from ..extensions import db
from hwpos.time_utils import to_utc_z


class Shift(db.Model):
    """
    Cashier shift (cash-drawer accountability window).

    WHY: Each shift is one cashier's continuous session between drawer
    open and close. Sales post their legs into per-method buckets so the
    close-out can compare expected vs counted cash.

    LIFECYCLE:
    - ACTIVE: Accepting sales; totals only ever grow
    - CLOSED: Counted, variance fixed; immutable

    One ACTIVE shift per cashier (partial unique index below plus
    lookup-before-insert under lock in shift_service).
    """
    __tablename__ = "shifts"
    __table_args__ = (
        db.Index(
            "uq_shifts_active_cashier",
            "cashier_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
        db.Index("ix_shifts_cashier_started", "cashier_id", "started_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, nullable=False)
    cashier_name = db.Column(db.String(128), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, CLOSED

    started_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cash tracking (all amounts in cents)
    starting_cash_cents = db.Column(db.Integer, nullable=False, default=0)

    # Running totals, appended to as sales post
    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_cents = db.Column(db.Integer, nullable=False, default=0)  # net of change given
    total_card_cents = db.Column(db.Integer, nullable=False, default=0)
    total_mobile_cents = db.Column(db.Integer, nullable=False, default=0)  # GCash, bank transfer, QR
    total_check_cents = db.Column(db.Integer, nullable=False, default=0)
    total_ar_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cash_refunds_cents = db.Column(db.Integer, nullable=False, default=0)  # cash handed back on voids
    transaction_count = db.Column(db.Integer, nullable=False, default=0)

    # Fixed at close
    expected_cash_cents = db.Column(db.Integer, nullable=True)
    ending_cash_cents = db.Column(db.Integer, nullable=True)
    cash_difference_cents = db.Column(db.Integer, nullable=True)  # counted - expected
    closed_by_user_id = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"

    def totals_dict(self) -> dict:
        return {
            "sales": self.total_sales_cents,
            "cash": self.total_cash_cents,
            "card": self.total_card_cents,
            "mobile": self.total_mobile_cents,
            "check": self.total_check_cents,
            "ar": self.total_ar_cents,
            "cash_refunds": self.total_cash_refunds_cents,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "status": self.status,
            "is_active": self.is_active,
            "started_at": to_utc_z(self.started_at),
            "ended_at": to_utc_z(self.ended_at) if self.ended_at else None,
            "starting_cash_cents": self.starting_cash_cents,
            "totals_cents": self.totals_dict(),
            "transaction_count": self.transaction_count,
            "expected_cash_cents": self.expected_cash_cents,
            "ending_cash_cents": self.ending_cash_cents,
            "cash_difference_cents": self.cash_difference_cents,
            "closed_by_user_id": self.closed_by_user_id,
            "notes": self.notes,
            "version_id": self.version_id,
        }
