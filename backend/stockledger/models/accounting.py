from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from ..money import to_display
from ..time_utils import to_utc_z


COGS_CATEGORY = "Cost of Goods Sold"


class Expense(db.Model):
    """
    Money spent, either entered by hand or generated by the system.

    System-generated rows (restock cost of goods, recurring postings) carry an
    idempotency_key. The column is unique, so two postings with the same key
    cannot both commit; free-text descriptions are never used as keys.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_expenses_idempotency_key"),
        db.CheckConstraint("amount > 0", name="ck_expenses_amount"),
        db.Index("ix_expenses_expense_date", "expense_date"),
        db.Index("ix_expenses_category", "category"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False)
    amount = db.Column(db.Numeric(18, 6), nullable=False)
    category = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(512), nullable=True)

    idempotency_key = db.Column(db.String(128), nullable=True)
    recurring_expense_id = db.Column(
        db.String(32), db.ForeignKey("recurring_expenses.id"), nullable=True, index=True
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "expense_date": to_utc_z(self.expense_date),
            "amount": to_display(self.amount),
            "category": self.category,
            "description": self.description,
            "idempotency_key": self.idempotency_key,
            "recurring_expense_id": self.recurring_expense_id,
        }


class RecurringExpenseDefinition(db.Model):
    """Monthly expense template. Never represents money moved by itself."""
    __tablename__ = "recurring_expenses"
    __table_args__ = (
        db.CheckConstraint("day_of_month >= 1 AND day_of_month <= 31", name="ck_recurring_day_of_month"),
        db.CheckConstraint("amount > 0", name="ck_recurring_amount"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    amount = db.Column(db.Numeric(18, 6), nullable=False)
    category = db.Column(db.String(128), nullable=False)
    day_of_month = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def posting_description(self) -> str:
        return f"Recurring: {self.name}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "amount": to_display(self.amount),
            "category": self.category,
            "day_of_month": self.day_of_month,
        }


class Refund(db.Model):
    """Cash returned to a customer. Counts as cash out and as an other loss."""
    __tablename__ = "refunds"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_refunds_amount"),
        db.Index("ix_refunds_refund_date", "refund_date"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    refund_date = db.Column(db.DateTime(timezone=True), nullable=False)
    amount = db.Column(db.Numeric(18, 6), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "refund_date": to_utc_z(self.refund_date),
            "amount": to_display(self.amount),
            "reason": self.reason,
        }


class BadDebt(db.Model):
    """Receivable written off as uncollectible."""
    __tablename__ = "bad_debts"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_bad_debts_amount"),
        db.Index("ix_bad_debts_write_off_date", "write_off_date"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    write_off_date = db.Column(db.DateTime(timezone=True), nullable=False)
    amount = db.Column(db.Numeric(18, 6), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "write_off_date": to_utc_z(self.write_off_date),
            "amount": to_display(self.amount),
            "reason": self.reason,
        }
