from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldtasks.models import SystemAuditLog

logger = logging.getLogger("fieldtasks.audit")


def log_audit(
    db: Session,
    *,
    tenant_id: str | None,
    user_id: str,
    action: str,
    table_name: str,
    record_id: str | None = None,
    old_values: dict[str, Any] | None = None,
    new_values: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> bool:
    entry = SystemAuditLog(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        table_name=table_name,
        record_id=record_id,
        old_values=old_values,
        new_values=new_values or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "user_id": user_id,
                "table_name": table_name,
                "record_id": record_id,
            },
        )
        return False

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "tenant_id": tenant_id,
            "action": action,
            "user_id": user_id,
            "table_name": table_name,
            "record_id": record_id,
            "new_values": new_values or {},
        },
    )
    return True
