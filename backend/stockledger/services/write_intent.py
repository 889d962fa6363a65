# Overview: Staged write sets applied in a single database transaction.

"""
Write Intents

Settlement operations compute everything first and write last. The computed
changes are collected in a WriteIntent (inserts, updates and deletes, each
update optionally carrying the version it was computed from) and applied by
apply_intent inside one transaction:

- every UPDATE/DELETE re-reads its row under lock_for_update and compares
  version_id with the expected version; a mismatch is a ConflictError
- each write is flushed in staging order, so parents land before children
- any failure rolls the whole intent back; nothing partial is committed

StaleDataError / IntegrityError / OperationalError at flush or commit are all
reported as ConflictError. The caller decides whether to retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, NotFoundError
from ..extensions import db
from .concurrency import lock_for_update


OP_INSERT = "INSERT"
OP_UPDATE = "UPDATE"
OP_DELETE = "DELETE"


@dataclass
class StagedWrite:
    op: str
    model: Any
    pk: str | None = None
    values: dict = field(default_factory=dict)
    expected_version: int | None = None

    def describe(self) -> str:
        return f"{self.op} {self.model.__tablename__} {self.pk or self.values.get('id')}"


@dataclass
class WriteIntent:
    """Ordered list of staged writes. Building one touches no database state."""
    writes: list[StagedWrite] = field(default_factory=list)

    def insert(self, model, **values) -> StagedWrite:
        write = StagedWrite(op=OP_INSERT, model=model, values=values)
        self.writes.append(write)
        return write

    def update(self, model, pk: str, *, expected_version: int | None = None, **values) -> StagedWrite:
        write = StagedWrite(op=OP_UPDATE, model=model, pk=pk, values=values, expected_version=expected_version)
        self.writes.append(write)
        return write

    def delete(self, model, pk: str, *, expected_version: int | None = None) -> StagedWrite:
        write = StagedWrite(op=OP_DELETE, model=model, pk=pk, expected_version=expected_version)
        self.writes.append(write)
        return write

    def extend(self, other: "WriteIntent") -> None:
        self.writes.extend(other.writes)

    def inserts_of(self, model) -> list[dict]:
        return [w.values for w in self.writes if w.op == OP_INSERT and w.model is model]

    def __len__(self) -> int:
        return len(self.writes)


def _load_for_write(write: StagedWrite):
    pk_col = list(write.model.__mapper__.primary_key)[0]
    query = db.session.query(write.model).filter(pk_col == write.pk)
    row = lock_for_update(query).populate_existing().first()
    if row is None:
        raise NotFoundError(f"{write.model.__name__} {write.pk} not found")
    if write.expected_version is not None and row.version_id != write.expected_version:
        raise ConflictError(
            f"{write.model.__name__} {write.pk} was modified concurrently",
            details={"expected_version": write.expected_version, "actual_version": row.version_id},
        )
    return row


def _apply_write(write: StagedWrite) -> None:
    if write.op == OP_INSERT:
        db.session.add(write.model(**write.values))
    elif write.op == OP_UPDATE:
        row = _load_for_write(write)
        for key, value in write.values.items():
            setattr(row, key, value)
            # Versioned rows always bump their version, even for same-value writes
            if write.expected_version is not None:
                flag_modified(row, key)
    elif write.op == OP_DELETE:
        row = _load_for_write(write)
        db.session.delete(row)
    else:
        raise ValueError(f"unknown write op: {write.op}")
    db.session.flush()


def apply_intent(intent: WriteIntent) -> None:
    """
    Apply every staged write, then commit. All or nothing.

    Raises:
        ConflictError: version mismatch or database-level conflict
        NotFoundError: a row to update/delete no longer exists
    """
    try:
        for write in intent.writes:
            _apply_write(write)
        db.session.commit()
    except (StaleDataError, IntegrityError, OperationalError) as exc:
        db.session.rollback()
        current_app.logger.warning("Write intent rolled back on conflict: %s", exc)
        raise ConflictError("concurrent modification detected; retry the operation") from exc
    except Exception:
        db.session.rollback()
        raise
