"""Request and response models for the HTTP API.

Fields are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ============ Chat ============

class CreateSessionRequest(ApiModel):
    model: str | None = None


class SessionResponse(ApiModel):
    session_id: str
    model: str
    channel: str
    created_at: datetime
    status: str
    last_updated_at: datetime


class SendMessageRequest(ApiModel):
    session_id: str | None = None
    prompt: str | None = None


class SendMessageResponse(ApiModel):
    session_id: str
    content: str
    is_complete: bool
    status: str
    last_updated_at: datetime | None = None


class UpdateModelRequest(ApiModel):
    session_id: str | None = None
    model: str | None = None


class UpdateModelResponse(ApiModel):
    message: str
    model: str


class SessionStatusResponse(ApiModel):
    session_id: str
    model: str
    channel: str
    status: str
    created_at: datetime
    last_updated_at: datetime
    last_prompt: str | None = None
    last_response: str | None = None
    last_response_preview: str | None = None
    last_error: str | None = None


class BatchRequest(ApiModel):
    session_ids: list[str] = Field(default_factory=list)
    prompt: str | None = None


class BatchResultResponse(ApiModel):
    session_id: str
    status: str
    content: str = ""
    error: str | None = None


class MessageResponse(ApiModel):
    message: str


# ============ Directory ============

class DirectoryItem(ApiModel):
    name: str
    full_path: str


class DirectoryListResponse(ApiModel):
    base_directory: str
    current_directory: str
    directories: list[DirectoryItem]


class CurrentDirectoryResponse(ApiModel):
    current_directory: str
    base_directory: str | None = None


class SwitchDirectoryRequest(ApiModel):
    directory_path: str | None = None


class SwitchDirectoryResponse(ApiModel):
    message: str
    current_directory: str


# ============ Channels ============

class ChannelInfoResponse(ApiModel):
    name: str
    enabled: bool
    status: str


class TelegramSettingsResponse(ApiModel):
    enabled: bool
    allowed_chat_id: int | None = None
    default_model: str


# ============ Operations ============

class OperationLogEntryResponse(ApiModel):
    timestamp: datetime
    source: str
    level: str
    message: str


class ProcessStatusResponse(ApiModel):
    name: str
    is_running: bool
    pid: int | None = None
    port: int | None = None
    port_open: bool | None = None
    started_at: datetime | None = None
    exited_at: datetime | None = None
    exit_code: int | None = None
    last_output: str | None = None
    last_error: str | None = None
    recent_logs: list[OperationLogEntryResponse] = Field(default_factory=list)


class OperationsStatusResponse(ApiModel):
    timestamp: datetime
    frontend: ProcessStatusResponse


class OperationsActionResponse(ApiModel):
    action: str
    status: str
    message: str | None = None
    snapshot: OperationsStatusResponse | None = None
    timestamp: datetime


class DiagnosticCheckResponse(ApiModel):
    command: str
    exit_code: int | None = None
    output: str | None = None
    error: str | None = None
    timed_out: bool = False


class DiagnosticsResponse(ApiModel):
    ran_at: datetime
    checks: list[DiagnosticCheckResponse]
