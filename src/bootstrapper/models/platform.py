"""Host platform facts resolved by the capability probe."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PlatformKind(str, Enum):
    LINUX = "linux"
    WINDOWS = "windows"
    MACOS = "macos"
    UNKNOWN = "unknown"


class OSInfo(BaseModel):
    """Operating system identification."""

    kind: PlatformKind = Field(..., description="Operating system family")
    version: str = Field(..., description="Kernel or OS release string")
    distro_id: Optional[str] = Field(
        None, description="Linux distribution id from os-release (e.g. 'ubuntu')"
    )
    distro_version: Optional[str] = Field(
        None, description="Distribution version id (e.g. '22.04')"
    )


class PlatformProfile(BaseModel):
    """Capability flags that parameterize the setup transition table.

    Resolved once per session when setup starts.
    """

    os: OSInfo
    requires_interactive_elevation: bool = Field(
        ..., description="Runtime install needs an operator-supplied password"
    )
    requires_start_confirmation: bool = Field(
        ..., description="Setup pauses at AwaitingStart until the operator confirms"
    )
