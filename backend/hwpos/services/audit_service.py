# Overview: Service-layer operations for audit events; append-only, same transaction as the change.

from __future__ import annotations

import json
from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
Audit Event Invariants

- Append-only. No updates or deletes of existing events.
- No domain/business logic here.
- Events are written inside the same DB transaction as the change they record;
  callers own the commit.
"""


def append_audit_event(
    *,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    sale_id: int | None = None,
    shift_id: int | None = None,
    customer_account_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict | str | None = None,
) -> AuditEvent:
    if isinstance(payload, dict):
        payload = json.dumps(payload, sort_keys=True)

    ev = AuditEvent(
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        sale_id=sale_id,
        shift_id=shift_id,
        customer_account_id=customer_account_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    return ev


def list_audit_events(
    *,
    event_category: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    """Most recent first."""
    q = db.session.query(AuditEvent)
    if event_category:
        q = q.filter(AuditEvent.event_category == event_category)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    return q.order_by(AuditEvent.id.desc()).limit(limit).all()
