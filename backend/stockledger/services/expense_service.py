# Overview: Ad hoc expenses, recurring expense definitions, and the monthly recurring poster.

"""
Recurring Expense Poster

post_due_recurring_expenses(as_of) posts each recurring definition at most
once per calendar month:

1. Read phase (before any write): every definition, plus the idempotency
   keys and descriptions of expenses already dated inside as_of's month.
2. Decide: a definition is skipped when its key "recurring:<id>:<YYYY-MM>"
   or its legacy description "Recurring: <name>" is already present.
3. Write: one Expense per remaining definition, all in a single intent,
   dated on day_of_month clamped to the month's length.

The unique idempotency_key column turns a concurrent double run into a
ConflictError on the loser; re-running it then finds everything skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..ids import new_id
from ..models import Expense, RecurringExpenseDefinition
from ..time_utils import clamp_day_of_month, month_bounds, month_key, normalize_datetime, utcnow
from ..validation import parse_int, parse_money, parse_text
from .write_intent import WriteIntent, apply_intent


def recurring_idempotency_key(definition_id: str, as_of: date | datetime) -> str:
    return f"recurring:{definition_id}:{month_key(as_of)}"


# =============================================================================
# AD HOC EXPENSES
# =============================================================================

def record_expense(
    amount,
    category: str,
    expense_date: datetime | None = None,
    description: str | None = None,
) -> Expense:
    amount = parse_money(amount, "amount", positive=True)
    category = parse_text(category, "category", max_length=128)
    description = parse_text(description, "description", max_length=512, required=False)

    expense_id = new_id()
    intent = WriteIntent()
    intent.insert(
        Expense,
        id=expense_id,
        expense_date=expense_date or utcnow(),
        amount=amount,
        category=category,
        description=description,
    )
    apply_intent(intent)
    current_app.logger.info("Recorded expense %s: %s %s", expense_id, category, amount)
    return db.session.get(Expense, expense_id)


def list_expenses(start: datetime | None = None, end: datetime | None = None) -> list[Expense]:
    query = db.session.query(Expense)
    if start is not None:
        query = query.filter(Expense.expense_date >= start)
    if end is not None:
        query = query.filter(Expense.expense_date <= end)
    return query.order_by(Expense.expense_date.desc(), Expense.id).all()


# =============================================================================
# RECURRING DEFINITIONS
# =============================================================================

def create_recurring_expense(name: str, amount, category: str, day_of_month) -> RecurringExpenseDefinition:
    name = parse_text(name, "name")
    amount = parse_money(amount, "amount", positive=True)
    category = parse_text(category, "category", max_length=128)
    day = parse_int(day_of_month, "day_of_month")
    if day < 1 or day > 31:
        raise ValidationError("day_of_month must be between 1 and 31")

    definition_id = new_id()
    intent = WriteIntent()
    intent.insert(
        RecurringExpenseDefinition,
        id=definition_id,
        name=name,
        amount=amount,
        category=category,
        day_of_month=day,
    )
    apply_intent(intent)
    return db.session.get(RecurringExpenseDefinition, definition_id)


def list_recurring_expenses() -> list[RecurringExpenseDefinition]:
    return (
        db.session.query(RecurringExpenseDefinition)
        .order_by(RecurringExpenseDefinition.name, RecurringExpenseDefinition.id)
        .all()
    )


# =============================================================================
# MONTHLY POSTING
# =============================================================================

@dataclass
class RecurringPostingSummary:
    posted_count: int = 0
    skipped_count: int = 0
    posted_ids: list[str] = field(default_factory=list)
    month: str = ""

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "posted_count": self.posted_count,
            "skipped_count": self.skipped_count,
            "posted_ids": list(self.posted_ids),
        }


def post_due_recurring_expenses(as_of: date | datetime | None = None) -> RecurringPostingSummary:
    """
    Post every recurring definition not yet posted for as_of's month.

    Raises:
        ConflictError: a concurrent run posted one of the same keys first
    """
    as_of = normalize_datetime(as_of) if as_of is not None else utcnow()
    month_start, month_end = month_bounds(as_of)
    summary = RecurringPostingSummary(month=month_key(as_of))

    # Read phase: finish every read before staging any write
    definitions = list_recurring_expenses()
    existing = (
        db.session.query(Expense.idempotency_key, Expense.description)
        .filter(Expense.expense_date >= month_start, Expense.expense_date <= month_end)
        .all()
    )
    used_keys = {key for key, _ in existing if key}
    used_descriptions = {desc for _, desc in existing if desc}

    intent = WriteIntent()
    for definition in definitions:
        key = recurring_idempotency_key(definition.id, as_of)
        if key in used_keys or definition.posting_description in used_descriptions:
            summary.skipped_count += 1
            continue

        target = clamp_day_of_month(month_start.year, month_start.month, definition.day_of_month)
        expense_id = new_id()
        intent.insert(
            Expense,
            id=expense_id,
            expense_date=datetime(target.year, target.month, target.day),
            amount=definition.amount,
            category=definition.category,
            description=definition.posting_description,
            idempotency_key=key,
            recurring_expense_id=definition.id,
        )
        used_keys.add(key)
        summary.posted_ids.append(expense_id)
        summary.posted_count += 1

    if len(intent):
        apply_intent(intent)

    current_app.logger.info(
        "Recurring expenses for %s: posted=%s skipped=%s",
        summary.month, summary.posted_count, summary.skipped_count,
    )
    return summary
