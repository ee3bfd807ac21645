from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog
from app.models.user import User
from app.services.errors import DomainValidationError
from app.services.paging import Page, PageParams, paginate


def _json_value(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def snapshot_model(obj: Any | None) -> dict | None:
    if obj is None:
        return None
    data: dict[str, Any] = {}
    mapper = inspect(obj).mapper
    for column in mapper.columns:
        data[column.key] = _json_value(getattr(obj, column.key))
    return data


def log_event(
    db: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str,
    entity_id: str,
    facility_id: int | None = None,
    before_obj: Any | None = None,
    after_obj: Any | None = None,
    before_data: dict | None = None,
    after_data: dict | None = None,
    request_id: str | None = None,
    ip_address: str | None = None,
) -> AuditLog:
    entry = AuditLog(
        facility_id=facility_id,
        actor_user_id=actor.id if actor else None,
        actor_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        request_id=request_id,
        ip_address=ip_address,
        before_json=before_data if before_data is not None else snapshot_model(before_obj),
        after_json=after_data if after_data is not None else snapshot_model(after_obj),
    )
    db.add(entry)
    return entry


AUDITED_ENTITY_TYPES = ("clinic", "patient", "appointment", "invoice", "user")


def entity_history(
    db: Session, facility_id: int, *, entity_type: str, entity_id: str, params: PageParams
) -> Page[AuditLog]:
    """Newest-first audit trail of one record, limited to rows written for ``facility_id``."""
    if entity_type not in AUDITED_ENTITY_TYPES:
        raise DomainValidationError(f"Unknown entity type '{entity_type}'")
    stmt = (
        select(AuditLog)
        .where(
            AuditLog.facility_id == facility_id,
            AuditLog.entity_type == entity_type,
            AuditLog.entity_id == str(entity_id),
        )
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    )
    return paginate(db, stmt, params)
