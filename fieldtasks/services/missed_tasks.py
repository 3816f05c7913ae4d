from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldtasks.errors import StoreError
from fieldtasks.models import TaskInstance, TaskState
from fieldtasks.services.deadlines import civil_timezone, civil_today

logger = logging.getLogger("fieldtasks.missed_tasks")


@dataclass(frozen=True, slots=True)
class SweepResult:
    target_date: date
    updated: int
    tenant_id: str | None = None
    task_ids: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return f"Se marcaron {self.updated} tareas como incumplidas para la fecha {self.target_date.isoformat()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def mark_missed_tasks(
    db: Session,
    *,
    offset_hours: float,
    target_date: date | None = None,
    tenant_id: str | None = None,
    now_utc: datetime | None = None,
) -> SweepResult:
    """Move every task still pending on or before ``target_date`` to missed.

    Runs as one UPDATE so concurrent completions either land first (and are
    skipped by the state filter) or see the missed state. Re-running for the
    same date matches nothing new.
    """
    target = target_date or civil_today(now_utc or _utcnow(), offset_hours=offset_hours)

    stmt = (
        update(TaskInstance)
        .where(
            TaskInstance.estado == TaskState.PENDING,
            TaskInstance.fecha_programada <= target,
        )
        .values(estado=TaskState.MISSED)
        .returning(TaskInstance.id)
        .execution_options(synchronize_session=False)
    )
    if tenant_id is not None:
        stmt = stmt.where(TaskInstance.tenant_id == tenant_id)

    try:
        task_ids = list(db.scalars(stmt).all())
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "missed_task_sweep_failed",
            extra={"target_date": target.isoformat(), "tenant_id": tenant_id},
        )
        raise StoreError() from exc

    result = SweepResult(target_date=target, updated=len(task_ids), tenant_id=tenant_id, task_ids=task_ids)
    logger.info(
        "missed_task_sweep",
        extra={
            "target_date": target.isoformat(),
            "tenant_id": tenant_id,
            "updated": result.updated,
        },
    )
    return result


def resolve_scheduled_sweep_date(now_utc: datetime, *, offset_hours: float, cutoff_local: time) -> date:
    """Day the background sweep should close at ``now_utc``.

    Today is only closed once the civil clock passes ``cutoff_local``; before
    that the previous day is the latest one that is definitely over.
    """
    local_now = now_utc.astimezone(civil_timezone(offset_hours))
    if local_now.time() >= cutoff_local:
        return local_now.date()
    return local_now.date() - timedelta(days=1)
