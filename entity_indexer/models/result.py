"""Tagged result values shared by recovery, validation and the cascade.

Stages return ``Ok(value)`` or ``Err(reason, errors)`` instead of raising,
so the cascade can inspect a failure and decide whether to escalate.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, List, TypeVar, Union

T = TypeVar("T")


class FailureReason(str, Enum):
    """Why an extraction attempt did not produce a validated result."""
    TIMEOUT = "timeout"
    INVALID_JSON = "invalid_json"
    SCHEMA_INVALID = "schema_invalid"
    ERROR = "error"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful stage result."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed stage result with a reason tag and detail messages."""
    reason: FailureReason
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]
