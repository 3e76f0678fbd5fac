"""Pydantic models for HTTP API requests and responses."""

from typing import Optional

from pydantic import BaseModel, Field, SecretStr, field_serializer, field_validator

from bootstrapper.models.platform import PlatformKind
from bootstrapper.models.status import InstallationStage, parse_stage, to_wire


class CredentialRequest(BaseModel):
    """POST /api/v1.0/setup/credential payload.

    Answers the outstanding privilege request announced by a
    ``privilege_request`` event.

    Example:
        {
            "request_id": "5f0c0e8d9b6a4c1e8e1f5b0c2d3a4b5c",
            "secret": "********"
        }
    """

    request_id: str = Field(..., min_length=1, description="Id of the outstanding request")
    secret: SecretStr = Field(..., description="Administrator password, never logged")


class RetryRequest(BaseModel):
    """POST /api/v1.0/setup/retry payload.

    Example:
        {
            "stage": "ContainerSetupFailed"
        }
    """

    stage: Optional[InstallationStage] = Field(
        None,
        description="Failed stage the client expects to retry",
        examples=["RuntimeInstallFailed", "ContainerSetupFailed"],
    )

    @field_validator("stage", mode="before")
    @classmethod
    def parse_wire_name(cls, v):
        if v is None:
            return None
        return parse_stage(v)


class ProgressData(BaseModel):
    """Progress data nested in response."""

    stage: InstallationStage = Field(..., description="Current setup stage")
    progress: int = Field(..., ge=0, le=100, description="Percentage completion (0-100)")
    message: str = Field(..., description="Human-readable status description")
    error: Optional[str] = Field(
        None, description="Error code and message if the stage is a failure"
    )
    failed_at: Optional[InstallationStage] = Field(
        None, description="Stage a retry will re-enter"
    )
    pending_request_id: Optional[str] = Field(
        None, description="Outstanding privilege request awaiting a credential"
    )
    platform: Optional[PlatformKind] = Field(None, description="Detected platform")

    @field_serializer("stage", "failed_at")
    def serialize_stage(self, stage: Optional[InstallationStage]) -> Optional[str]:
        return to_wire(stage) if stage is not None else None


class ProgressResponse(BaseModel):
    """GET /api/v1.0/setup/progress response."""

    code: int = Field(..., description="Application-level status code (200/500)")
    msg: str = Field(..., description="Status message or error description")
    data: ProgressData = Field(..., description="Progress data")


class SuccessResponse(BaseModel):
    """Success response for command endpoints."""

    code: int = Field(default=200, description="Application-level status code (200)")
    msg: str = Field(default="success", description="Success message")
    data: Optional[dict] = Field(None, description="Optional response data")


class ErrorResponse(BaseModel):
    """Error response for all endpoints.

    HTTP status code is always 200, real status in 'code' field.
    """

    code: int = Field(..., description="Application-level error code (400/404/409/500)")
    msg: str = Field(..., description="Error message with error code prefix")
    stage: Optional[str] = Field(None, description="Current stage wire name")


class StageReportPayload(BaseModel):
    """Payload POSTed to the configured callback URL on every stage transition."""

    stage: InstallationStage
    progress: int = Field(..., ge=0, le=100)
    message: str

    @field_serializer("stage")
    def serialize_stage(self, stage: InstallationStage) -> str:
        return to_wire(stage)
