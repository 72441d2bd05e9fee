from __future__ import annotations

from datetime import datetime
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from lockergate.models.command import Command, CommandAction

MAX_TENANT_ID_LENGTH = 64


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionCreate(_CamelModel):
    device_id: Union[str, int, None] = Field(
        default=None,
        validation_alias=AliasChoices("deviceId", "lockerId", "device_id"),
    )
    tenant_id: Union[str, int, None] = Field(
        default=None,
        validation_alias=AliasChoices("tenantId", "empresaId", "tenant_id"),
    )
    validity_ms: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("validityMs", "expiresInMs", "validity_ms"),
    )
    want_url: bool = Field(
        default=False,
        validation_alias=AliasChoices("wantUrl", "asUrl", "want_url"),
    )

    @field_validator("tenant_id")
    @classmethod
    def _tenant_fits_column(cls, value: Union[str, int, None]) -> Union[str, int, None]:
        if value is not None and len(str(value)) > MAX_TENANT_ID_LENGTH:
            raise ValueError(f"tenantId must be at most {MAX_TENANT_ID_LENGTH} characters")
        return value


class SessionOut(_CamelModel):
    ok: bool = True
    session_id: str
    device_id: str
    validity_ms: int
    expires_at: datetime
    payload: str


class ScanRequest(_CamelModel):
    code: Optional[str] = None


class ScanOut(_CamelModel):
    ok: bool
    command_id: Optional[str] = None
    device_id: Optional[str] = None
    action: Optional[str] = None
    error: Optional[str] = None


class CommandOut(_CamelModel):
    id: str
    device_id: str
    action: str

    @classmethod
    def from_command(cls, command: Command) -> "CommandOut":
        return cls(id=str(command.id), device_id=command.device_id, action=command.action)


class NextCommandOut(_CamelModel):
    ok: bool = True
    command: Optional[CommandOut] = None


class CommandCreate(_CamelModel):
    action: CommandAction = CommandAction.OPEN
    requested_by: Optional[str] = Field(default=None, max_length=128)


class CommandDetailOut(_CamelModel):
    id: str
    device_id: str
    action: str
    status: str
    origin_token_id: Optional[str] = None
    requested_by: Optional[str] = None
    ack_success: Optional[bool] = None
    created_at: datetime
    ack_at: Optional[datetime] = None

    @classmethod
    def from_command(cls, command: Command) -> "CommandDetailOut":
        return cls(
            id=str(command.id),
            device_id=command.device_id,
            action=command.action,
            status=command.status,
            origin_token_id=command.origin_token_id,
            requested_by=command.requested_by,
            ack_success=command.ack_success,
            created_at=command.created_at,
            ack_at=command.ack_at,
        )


class AckRequest(_CamelModel):
    success: bool = False


class AckOut(_CamelModel):
    ok: bool = True
    success: bool
    already_acknowledged: bool = False
