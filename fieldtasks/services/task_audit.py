from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from fieldtasks.audit import log_audit
from fieldtasks.errors import NotFoundError, StoreError, ValidationError
from fieldtasks.models import COMPLETED_TASK_STATES, AuditStatus, Notification, TaskInstance
from fieldtasks.security import REVIEWER_ROLES, AuthenticatedUser, ensure_role, ensure_same_tenant
from fieldtasks.services.push_notifications import DeliveryOutcome, dispatch_push_to_user

logger = logging.getLogger("fieldtasks.task_audit")

AuditDecision = Literal["approved", "rejected"]

NOTIFICATION_TYPE_APPROVED = "routine_approved"
NOTIFICATION_TYPE_REJECTED = "routine_rejected"
DEFAULT_ROUTINE_NAME = "Rutina"

_DECISION_TO_STATUS: dict[str, AuditStatus] = {
    "approved": AuditStatus.APPROVED,
    "rejected": AuditStatus.REJECTED,
}


@dataclass(frozen=True, slots=True)
class AuditMessage:
    notification_type: str
    title: str
    body: str


@dataclass(frozen=True, slots=True)
class AuditResult:
    task_id: str
    audit_status: AuditStatus
    notified_user_id: str | None = None
    push_outcomes: list[DeliveryOutcome] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_audit_message(decision: AuditDecision, *, routine_name: str | None, note: str | None) -> AuditMessage:
    name = (routine_name or "").strip() or DEFAULT_ROUTINE_NAME
    if decision == "approved":
        return AuditMessage(
            notification_type=NOTIFICATION_TYPE_APPROVED,
            title="Rutina Aprobada ✅",
            body=f'La ejecución de "{name}" ha sido aprobada por auditoría.',
        )
    return AuditMessage(
        notification_type=NOTIFICATION_TYPE_REJECTED,
        title="Rutina Rechazada ⚠️",
        body=f'La ejecución de "{name}" fue rechazada. Motivo: {(note or "").strip()}',
    )


def task_detail_url(task_id: str) -> str:
    return f"/my-tasks?task={task_id}"


def _load_task(db: Session, task_id: str) -> TaskInstance:
    task = db.scalar(
        select(TaskInstance)
        .options(joinedload(TaskInstance.routine))
        .where(TaskInstance.id == task_id)
    )
    if task is None:
        raise NotFoundError("Task not found", code="TASK_NOT_FOUND")
    return task


def _dispatch_best_effort(
    db: Session,
    *,
    user_id: str,
    message: AuditMessage,
    task_id: str,
) -> list[DeliveryOutcome]:
    try:
        return dispatch_push_to_user(
            db,
            user_id=user_id,
            title=message.title,
            body=message.body,
            url=task_detail_url(task_id),
        )
    except Exception:
        logger.exception(
            "audit_push_dispatch_failed",
            extra={"task_id": task_id, "user_id": user_id},
        )
        return []


def review_task(
    db: Session,
    *,
    actor: AuthenticatedUser,
    task_id: str,
    decision: AuditDecision,
    note: str | None = None,
    now_utc: datetime | None = None,
    request_id: str | None = None,
) -> AuditResult:
    ensure_role(actor, REVIEWER_ROLES, message="Forbidden: Insufficient permissions")
    if decision not in _DECISION_TO_STATUS:
        raise ValidationError("Decisión de auditoría inválida.", code="INVALID_AUDIT_STATUS")
    normalized_note = (note or "").strip() or None
    if decision == "rejected" and normalized_note is None:
        raise ValidationError("Audit note is required for rejection", code="AUDIT_NOTE_REQUIRED")

    task = _load_task(db, task_id)
    ensure_same_tenant(actor, task.tenant_id)
    if task.estado not in COMPLETED_TASK_STATES:
        raise ValidationError("Solo se pueden auditar tareas completadas.", code="TASK_NOT_COMPLETED")

    now_utc = now_utc or _utcnow()
    new_status = _DECISION_TO_STATUS[decision]
    previous_status = task.audit_status
    executor_id = task.completado_por
    routine_name = task.routine.nombre if task.routine is not None else None
    message = build_audit_message(decision, routine_name=routine_name, note=normalized_note)
    notify_user_id = executor_id if executor_id and executor_id != actor.user_id else None

    try:
        row = db.execute(
            update(TaskInstance)
            .where(
                TaskInstance.id == task.id,
                TaskInstance.estado.in_(COMPLETED_TASK_STATES),
            )
            .values(
                audit_status=new_status,
                audit_at=now_utc,
                audit_by=actor.user_id,
                audit_notas=normalized_note,
            )
            .returning(TaskInstance.id)
            .execution_options(synchronize_session="fetch")
        ).one_or_none()
        if row is None:
            db.rollback()
            raise ValidationError("Solo se pueden auditar tareas completadas.", code="TASK_NOT_COMPLETED")
        if notify_user_id is not None:
            db.add(
                Notification(
                    tenant_id=task.tenant_id,
                    user_id=notify_user_id,
                    type=message.notification_type,
                    title=message.title,
                    entity_id=task.id,
                    leido=False,
                )
            )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "task_audit_store_failed",
            extra={"task_id": task_id, "user_id": actor.user_id, "decision": decision},
        )
        raise StoreError() from exc

    logger.info(
        "task_audited",
        extra={
            "task_id": task.id,
            "tenant_id": task.tenant_id,
            "user_id": actor.user_id,
            "audit_status": new_status.value,
            "notified_user_id": notify_user_id,
        },
    )
    log_audit(
        db,
        tenant_id=task.tenant_id,
        user_id=actor.user_id,
        action="audit_task",
        table_name="task_instances",
        record_id=task.id,
        old_values={"audit_status": previous_status.value if previous_status else None},
        new_values={"audit_status": new_status.value, "note": normalized_note},
        request_id=request_id,
    )

    push_outcomes: list[DeliveryOutcome] = []
    if notify_user_id is not None:
        push_outcomes = _dispatch_best_effort(db, user_id=notify_user_id, message=message, task_id=task.id)

    return AuditResult(
        task_id=task.id,
        audit_status=new_status,
        notified_user_id=notify_user_id,
        push_outcomes=push_outcomes,
    )
