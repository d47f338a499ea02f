from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

TriggerOutcome = Literal["success", "unmapped", "template_missing", "delivery_error"]


@dataclass
class DispatchResult:
    success: bool
    notification_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TriggerResult:
    outcome: TriggerOutcome
    notification_id: Optional[str] = None
    used_fallback: bool = False

    @property
    def delivered(self) -> bool:
        return self.outcome == "success"


@dataclass
class PushMessage:
    token: str
    title: str
    body: str
    action_link: str = "/"
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchSendResult:
    success_count: int = 0
    failure_count: int = 0
    results: List[bool] = field(default_factory=list)


@dataclass
class FanoutResult:
    """Aggregate of a sequential chunked fan-out."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    failed_chunks: List[int] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0
