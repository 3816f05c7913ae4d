from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from fieldtasks.audit import log_audit
from fieldtasks.db import get_db
from fieldtasks.errors import CORS_HEADERS, AuthorizationError
from fieldtasks.schemas import (
    AuditExecutionRequest,
    CancelTaskRequest,
    CancelTaskResponse,
    CompleteTaskRequest,
    CompleteTaskResponse,
    MarkMissedTasksRequest,
    MarkMissedTasksResponse,
    PushConfigResponse,
    SendPushRequest,
    SendPushResponse,
    SuccessResponse,
)
from fieldtasks.security import (
    MANUAL_SWEEP_ROLES,
    AuthenticatedUser,
    Caller,
    SystemCaller,
    ensure_role,
    require_caller,
    require_user,
)
from fieldtasks.services.missed_tasks import mark_missed_tasks
from fieldtasks.services.push_notifications import dispatch_push_to_user, get_push_public_config
from fieldtasks.services.task_audit import review_task
from fieldtasks.services.task_cancellation import cancel_task
from fieldtasks.services.task_completion import complete_task
from fieldtasks.settings import get_settings

router = APIRouter(prefix="/functions/v1", tags=["tasks"])

PREFLIGHT_PATHS = (
    "/complete-task",
    "/audit-execution",
    "/cancel-task",
    "/mark-missed-tasks",
    "/send-push",
    "/get-vapid-public-key",
)


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    connecting_ip = request.headers.get("cf-connecting-ip")
    if connecting_ip:
        return connecting_ip.strip()
    if request.client:
        return request.client.host
    return None


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _with_cors(response: Response) -> None:
    response.headers.update(CORS_HEADERS)


def preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


for _path in PREFLIGHT_PATHS:
    router.add_api_route(_path, preflight, methods=["OPTIONS"], include_in_schema=False)


@router.post("/complete-task", response_model=CompleteTaskResponse)
def complete_task_endpoint(
    payload: CompleteTaskRequest,
    request: Request,
    response: Response,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> CompleteTaskResponse:
    _with_cors(response)
    result = complete_task(
        db,
        actor=user,
        task_id=payload.task_id,
        gps=payload.gps_data,
        inventory=payload.inventory,
        comments=payload.comments,
        client_ip=_client_ip(request),
    )
    request.state.task_id = result.task_id
    return CompleteTaskResponse(success=True, status=result.status.value)


@router.post("/audit-execution", response_model=SuccessResponse)
def audit_execution_endpoint(
    payload: AuditExecutionRequest,
    request: Request,
    response: Response,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> SuccessResponse:
    _with_cors(response)
    result = review_task(
        db,
        actor=user,
        task_id=payload.task_id,
        decision=payload.status,
        note=payload.note,
        request_id=_request_id(request),
    )
    request.state.task_id = result.task_id
    return SuccessResponse(success=True)


@router.post("/cancel-task", response_model=CancelTaskResponse)
def cancel_task_endpoint(
    payload: CancelTaskRequest,
    request: Request,
    response: Response,
    user: AuthenticatedUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> CancelTaskResponse:
    _with_cors(response)
    result = cancel_task(
        db,
        actor=user,
        task_id=payload.task_id,
        reason=payload.reason,
        scope=payload.scope,
        request_id=_request_id(request),
    )
    request.state.task_id = result.task_id
    return CancelTaskResponse(
        success=True,
        message=result.message,
        assignment_deactivated=result.assignment_deactivated,
        warning=result.assignment_warning,
    )


@router.post("/mark-missed-tasks", response_model=MarkMissedTasksResponse)
def mark_missed_tasks_endpoint(
    request: Request,
    response: Response,
    payload: MarkMissedTasksRequest | None = None,
    caller: Caller = Depends(require_caller),
    db: Session = Depends(get_db),
) -> MarkMissedTasksResponse:
    _with_cors(response)
    tenant_id: str | None = None
    if isinstance(caller, AuthenticatedUser):
        ensure_role(caller, MANUAL_SWEEP_ROLES, message="Forbidden: Insufficient permissions")
        tenant_id = caller.tenant_id

    result = mark_missed_tasks(
        db,
        offset_hours=get_settings().civil_utc_offset_hours,
        target_date=payload.date if payload is not None else None,
        tenant_id=tenant_id,
    )
    if isinstance(caller, AuthenticatedUser):
        log_audit(
            db,
            tenant_id=tenant_id,
            user_id=caller.user_id,
            action="mark_missed_tasks",
            table_name="task_instances",
            new_values={"date": result.target_date.isoformat(), "updated": result.updated},
            request_id=_request_id(request),
        )
    return MarkMissedTasksResponse(
        success=True,
        message=result.message,
        updated=result.updated,
        date=result.target_date,
    )


@router.post("/send-push", response_model=SendPushResponse)
def send_push_endpoint(
    payload: SendPushRequest,
    response: Response,
    caller: Caller = Depends(require_caller),
    db: Session = Depends(get_db),
) -> SendPushResponse:
    _with_cors(response)
    if not isinstance(caller, SystemCaller) and caller.user_id != payload.user_id:
        raise AuthorizationError("Forbidden: push can only target your own devices")

    outcomes = dispatch_push_to_user(
        db,
        user_id=payload.user_id,
        title=payload.title,
        body=payload.body,
        url=payload.url,
    )
    return SendPushResponse(success=True, results=[item.to_dict() for item in outcomes])


@router.get("/get-vapid-public-key", response_model=PushConfigResponse)
def get_vapid_public_key_endpoint(response: Response) -> PushConfigResponse:
    _with_cors(response)
    config = get_push_public_config()
    return PushConfigResponse(enabled=config["enabled"], public_key=config["publicKey"])
