"""
Poller state, timeline entries and snapshot (de)serialization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .status import BASELINE_PERCENT, CanonicalStatus


@dataclass(frozen=True)
class TimelineEvent:
    """One recorded status transition. Timestamps are epoch milliseconds."""

    status: CanonicalStatus
    timestamp: int
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value, "timestamp": self.timestamp}
        if self.message is not None:
            data["message"] = self.message
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEvent":
        return cls(
            status=CanonicalStatus(data["status"]),
            timestamp=int(data["timestamp"]),
            message=data.get("message"),
        )


@dataclass(frozen=True)
class Credentials:
    """Access secrets revealed once after a successful operation."""

    server_ip: str
    username: str
    password: str = field(repr=False)

    def to_dict(self) -> Dict[str, str]:
        return {"serverIp": self.server_ip, "username": self.username, "password": self.password}


@dataclass
class PollerState:
    """Tracked state of one remote task for one resource."""

    is_active: bool = False
    task_id: Optional[str] = None
    status: CanonicalStatus = CanonicalStatus.IDLE
    percent: int = 0
    error: Optional[str] = None
    timeline: List[TimelineEvent] = field(default_factory=list)
    credentials: Optional[Credentials] = field(default=None, repr=False)
    # Timeline recorder marker; internal, never persisted.
    last_recorded: CanonicalStatus = field(default=CanonicalStatus.IDLE, repr=False, compare=False)

    @classmethod
    def idle(cls) -> "PollerState":
        return cls()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_running(self) -> bool:
        """Active and still waiting on the remote side."""
        return self.is_active and not self.is_terminal

    def record(self, status: CanonicalStatus, now: int, message: Optional[str] = None) -> bool:
        """Append a timeline entry if ``status`` differs from the last recorded one.

        Returns True when an entry was appended.
        """
        if status == self.last_recorded:
            return False
        if self.timeline and now < self.timeline[-1].timestamp:
            now = self.timeline[-1].timestamp
        self.timeline.append(TimelineEvent(status=status, timestamp=now, message=message))
        self.last_recorded = status
        return True

    def to_snapshot(self) -> Dict[str, Any]:
        """Serializable view for the session store.

        Credentials and error are never part of a snapshot.
        """
        return {
            "isActive": self.is_active,
            "taskId": self.task_id,
            "status": self.status.value,
            "percent": self.percent,
            "timeline": [event.to_dict() for event in self.timeline],
        }

    @classmethod
    def from_snapshot(cls, snapshot: Optional[Dict[str, Any]]) -> "PollerState":
        """Rebuild state from a stored snapshot; anything inactive or unreadable is idle."""
        if not snapshot or not snapshot.get("isActive"):
            return cls.idle()
        try:
            status = CanonicalStatus(snapshot.get("status") or CanonicalStatus.QUEUED.value)
            timeline = [TimelineEvent.from_dict(item) for item in snapshot.get("timeline") or []]
            percent = int(snapshot.get("percent") or BASELINE_PERCENT[CanonicalStatus.QUEUED])
        except (KeyError, TypeError, ValueError):
            return cls.idle()
        if status == CanonicalStatus.IDLE:
            return cls.idle()
        task_id = snapshot.get("taskId")
        return cls(
            is_active=True,
            task_id=str(task_id) if task_id else None,
            status=status,
            percent=max(0, min(100, percent)),
            error=None,
            timeline=timeline,
            last_recorded=timeline[-1].status if timeline else CanonicalStatus.IDLE,
        )

    def view(self) -> Dict[str, Any]:
        """Presentation view: everything except the recorder marker."""
        data = self.to_snapshot()
        data["error"] = self.error
        data["credentials"] = self.credentials.to_dict() if self.credentials is not None else None
        return data
