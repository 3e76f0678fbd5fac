"""Events published to subscribers of a setup session."""

from typing import Literal, Union

from pydantic import BaseModel, Field, field_serializer, field_validator

from bootstrapper.models.status import InstallationStage, LogSource, parse_stage, to_wire


class StageEvent(BaseModel):
    """A stage transition. Carries exactly one stage tag."""

    type: Literal["stage"] = "stage"
    stage: InstallationStage

    @field_validator("stage", mode="before")
    @classmethod
    def parse_wire_name(cls, v):
        return parse_stage(v)

    @field_serializer("stage")
    def serialize_stage(self, stage: InstallationStage) -> str:
        return to_wire(stage)


class LogEvent(BaseModel):
    """A line of installer or container output."""

    type: Literal["log"] = "log"
    source: LogSource
    text: str
    sequence: int = Field(..., ge=1, description="Per-source sequence number")


class PrivilegeRequestEvent(BaseModel):
    """The orchestrator is waiting for a credential for ``request_id``."""

    type: Literal["privilege_request"] = "privilege_request"
    request_id: str


SetupEvent = Union[StageEvent, LogEvent, PrivilegeRequestEvent]
