from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Literal, Union

from pywebpush import WebPushException, webpush
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldtasks.models import PushSubscription
from fieldtasks.settings import get_settings, is_push_enabled

logger = logging.getLogger("fieldtasks.push")

GONE_STATUS_CODES = frozenset({404, 410})


@dataclass(frozen=True, slots=True)
class PushDelivered:
    subscription_id: int
    endpoint: str
    kind: Literal["ok"] = "ok"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PushEndpointRemoved:
    subscription_id: int
    endpoint: str
    status_code: int
    kind: Literal["deleted"] = "deleted"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class PushDeliveryFailed:
    subscription_id: int
    endpoint: str
    error: str
    status_code: int | None = None
    kind: Literal["error"] = "error"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


DeliveryOutcome = Union[PushDelivered, PushEndpointRemoved, PushDeliveryFailed]


@dataclass(frozen=True, slots=True)
class _PushTarget:
    subscription_id: int
    endpoint: str
    p256dh: str
    auth: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def get_push_public_config() -> dict[str, Any]:
    settings = get_settings()
    enabled = is_push_enabled()
    return {
        "enabled": enabled,
        "publicKey": (settings.push_vapid_public_key or "").strip() if enabled else None,
    }


def _deliver(target: _PushTarget, *, payload: str) -> DeliveryOutcome:
    if not is_push_enabled():
        return PushDeliveryFailed(
            subscription_id=target.subscription_id,
            endpoint=target.endpoint,
            error="push_disabled",
        )

    settings = get_settings()
    try:
        webpush(
            subscription_info={
                "endpoint": target.endpoint,
                "keys": {
                    "p256dh": target.p256dh,
                    "auth": target.auth,
                },
            },
            data=payload,
            vapid_private_key=settings.push_vapid_private_key,
            # pywebpush mutates the claims dict, so every call gets its own.
            vapid_claims={"sub": settings.push_vapid_subject},
            ttl=settings.push_ttl_seconds,
            headers={"Urgency": settings.push_urgency},
        )
    except WebPushException as exc:
        status_code: int | None = None
        if exc.response is not None:
            status_code = exc.response.status_code
        if status_code in GONE_STATUS_CODES:
            return PushEndpointRemoved(
                subscription_id=target.subscription_id,
                endpoint=target.endpoint,
                status_code=status_code,
            )
        return PushDeliveryFailed(
            subscription_id=target.subscription_id,
            endpoint=target.endpoint,
            error=str(exc),
            status_code=status_code,
        )
    except Exception as exc:  # pragma: no cover - transport errors from requests
        return PushDeliveryFailed(
            subscription_id=target.subscription_id,
            endpoint=target.endpoint,
            error=str(exc),
        )
    return PushDelivered(subscription_id=target.subscription_id, endpoint=target.endpoint)


def _fan_out(targets: list[_PushTarget], *, payload: str) -> list[DeliveryOutcome]:
    max_workers = max(1, min(len(targets), get_settings().push_max_workers))
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webpush") as pool:
        return list(pool.map(partial(_deliver, payload=payload), targets))


def _apply_outcomes(
    db: Session,
    *,
    subscriptions: list[PushSubscription],
    outcomes: list[DeliveryOutcome],
    now_utc: datetime,
) -> None:
    rows_by_id = {row.id: row for row in subscriptions}
    for outcome in outcomes:
        row = rows_by_id.get(outcome.subscription_id)
        if row is None:
            continue
        if isinstance(outcome, PushDelivered):
            row.last_used_at = now_utc
        elif isinstance(outcome, PushEndpointRemoved):
            db.delete(row)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "push_subscription_bookkeeping_failed",
            extra={"subscription_ids": sorted(rows_by_id)},
        )


def dispatch_push_to_user(
    db: Session,
    *,
    user_id: str,
    title: str,
    body: str,
    url: str | None = None,
    now_utc: datetime | None = None,
) -> list[DeliveryOutcome]:
    """Deliver one message to every push endpoint registered for ``user_id``.

    Endpoints are contacted in parallel and fail independently. Endpoints
    reported gone (404/410) are deleted; successful ones get ``last_used_at``
    stamped. A user without endpoints yields an empty list.
    """
    subscriptions = list(
        db.scalars(
            select(PushSubscription)
            .where(PushSubscription.user_id == user_id)
            .order_by(PushSubscription.id)
        ).all()
    )
    if not subscriptions:
        logger.info("push_no_subscriptions", extra={"user_id": user_id})
        return []

    targets = [
        _PushTarget(
            subscription_id=row.id,
            endpoint=row.endpoint,
            p256dh=row.p256dh,
            auth=row.auth,
        )
        for row in subscriptions
    ]
    payload = json.dumps({"title": title, "body": body, "url": url or "/"}, ensure_ascii=False)
    outcomes = _fan_out(targets, payload=payload)
    _apply_outcomes(db, subscriptions=subscriptions, outcomes=outcomes, now_utc=now_utc or _utcnow())

    logger.info(
        "push_dispatched",
        extra={
            "user_id": user_id,
            "total_targets": len(outcomes),
            "sent": sum(1 for item in outcomes if isinstance(item, PushDelivered)),
            "deleted": sum(1 for item in outcomes if isinstance(item, PushEndpointRemoved)),
            "failed": sum(1 for item in outcomes if isinstance(item, PushDeliveryFailed)),
        },
    )
    return outcomes
