from __future__ import annotations

import uuid


def new_id() -> str:
    """Opaque row id, generated when a write is staged (before commit)."""
    return uuid.uuid4().hex
