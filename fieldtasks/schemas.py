from datetime import date as date_type
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GpsData(BaseModel):
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    accuracy: float | None = Field(default=None, ge=0)


class InventoryItem(BaseModel):
    producto_id: str = Field(min_length=1, max_length=36)
    esperado: float | None = None
    fisico: float | None = None


class CompleteTaskRequest(_CamelModel):
    task_id: str = Field(alias="taskId", min_length=1, max_length=36)
    gps_data: GpsData | None = Field(default=None, alias="gpsData")
    inventory: list[InventoryItem] | None = None
    comments: str | None = Field(default=None, max_length=4000)


class CompleteTaskResponse(BaseModel):
    success: bool = True
    status: str


class AuditExecutionRequest(_CamelModel):
    task_id: str = Field(alias="taskId", min_length=1, max_length=36)
    status: Literal["approved", "rejected"]
    note: str | None = Field(default=None, max_length=4000)


class SuccessResponse(BaseModel):
    success: bool = True


class CancelTaskRequest(_CamelModel):
    task_id: str = Field(alias="taskId", min_length=1, max_length=36)
    reason: str = Field(max_length=2000)
    scope: Literal["today", "future"] = "today"


class CancelTaskResponse(_CamelModel):
    success: bool = True
    message: str
    assignment_deactivated: bool | None = Field(default=None, serialization_alias="assignmentDeactivated")
    warning: str | None = None


class MarkMissedTasksRequest(BaseModel):
    date: date_type | None = None


class MarkMissedTasksResponse(BaseModel):
    success: bool = True
    message: str
    updated: int
    date: date_type


class SendPushRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1, max_length=36)
    title: str = Field(min_length=1, max_length=255)
    body: str = Field(default="", max_length=2000)
    url: str | None = Field(default=None, max_length=1024)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("title must not be blank")
        return value


class SendPushResponse(BaseModel):
    success: bool = True
    results: list[dict[str, Any]]


class PushConfigResponse(_CamelModel):
    enabled: bool
    public_key: str | None = Field(default=None, serialization_alias="publicKey")
