"""In-memory setup session owned by the orchestrator."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from bootstrapper.models.platform import PlatformProfile
from bootstrapper.models.status import InstallationStage, LogSource


class LogLine(BaseModel):
    """One line of installer or container output.

    Sequence numbers start at 1 and increase by one per source.
    """

    model_config = ConfigDict(frozen=True)

    source: LogSource
    text: str
    sequence: int = Field(..., ge=1)


class PrivilegeRequest(BaseModel):
    """Outstanding request for an elevated-privilege credential."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=datetime.now)
    resolved: bool = False


class SetupSession:
    """Mutable state of one setup run.

    Only the orchestrator writes to it. Nothing here is persisted: a new process
    always starts from NotStarted.
    """

    def __init__(self):
        self.stage: InstallationStage = InstallationStage.NOT_STARTED
        self.history: list[InstallationStage] = [InstallationStage.NOT_STARTED]
        self.platform: Optional[PlatformProfile] = None
        self.last_error: Optional[str] = None
        self.failed_at: Optional[InstallationStage] = None
        self.pending_request: Optional[PrivilegeRequest] = None
        self._logs: dict[LogSource, list[LogLine]] = {source: [] for source in LogSource}

    def append_log(self, source: LogSource, text: str) -> LogLine:
        lines = self._logs[source]
        line = LogLine(source=source, text=text, sequence=len(lines) + 1)
        lines.append(line)
        return line

    def logs(self, source: LogSource) -> list[LogLine]:
        return list(self._logs[source])
