"""
Canonical task status vocabulary, phase normalization and percent estimation.
"""

from enum import Enum
from typing import Any, Optional, Sequence, Tuple


class CanonicalStatus(str, Enum):
    """Canonical provisioning states, in expected order of progression."""

    IDLE = "idle"
    QUEUED = "queued"
    PROVISIONING = "provisioning"
    IMAGING = "imaging"
    INSTALLING = "installing"
    CONFIGURING = "configuring"
    REBOOTING = "rebooting"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CanonicalStatus.COMPLETE, CanonicalStatus.FAILED})

# Evaluated top to bottom; the first rule with a matching keyword wins.
PHASE_RULES: Sequence[Tuple[Tuple[str, ...], CanonicalStatus]] = (
    (("queue",), CanonicalStatus.QUEUED),
    (("provision",), CanonicalStatus.PROVISIONING),
    (("imag", "download"), CanonicalStatus.IMAGING),
    (("install",), CanonicalStatus.INSTALLING),
    (("config",), CanonicalStatus.CONFIGURING),
    (("reboot", "boot"), CanonicalStatus.REBOOTING),
    (("complete", "done", "finish"), CanonicalStatus.COMPLETE),
    (("fail", "error"), CanonicalStatus.FAILED),
)

# Unrecognized phases mean "something is running", not an error.
FALLBACK_STATUS = CanonicalStatus.INSTALLING

BASELINE_PERCENT = {
    CanonicalStatus.IDLE: 0,
    CanonicalStatus.QUEUED: 5,
    CanonicalStatus.PROVISIONING: 20,
    CanonicalStatus.IMAGING: 40,
    CanonicalStatus.INSTALLING: 65,
    CanonicalStatus.CONFIGURING: 85,
    CanonicalStatus.REBOOTING: 95,
    CanonicalStatus.COMPLETE: 100,
    CanonicalStatus.FAILED: 0,
}


def normalize_status(phase: Optional[str], failed: bool = False) -> CanonicalStatus:
    """Map a free-text remote phase to a canonical status.

    Rules (first match wins, case-insensitive substring test):
    - failed flag set -> failed
    - empty or missing phase -> idle
    - PHASE_RULES in order
    - anything else -> installing
    """
    if failed:
        return CanonicalStatus.FAILED
    if not phase or not str(phase).strip():
        return CanonicalStatus.IDLE

    normalized = str(phase).lower()
    for keywords, status in PHASE_RULES:
        if any(keyword in normalized for keyword in keywords):
            return status
    return FALLBACK_STATUS


def _coerce_percent(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return max(0, min(100, int(round(number))))


def estimate_percent(
    status: CanonicalStatus,
    explicit: Any = None,
    previous: Optional[int] = None,
) -> int:
    """Return the percent to display for a status.

    An explicit remote value overrides the status baseline. When ``previous``
    is given the result never goes below it, except for ``failed`` which keeps
    the previous value as-is and ``complete`` which is always 100.
    """
    if status == CanonicalStatus.COMPLETE:
        return 100
    if status == CanonicalStatus.FAILED:
        return previous if previous is not None else BASELINE_PERCENT[status]

    computed = _coerce_percent(explicit)
    if computed is None:
        computed = BASELINE_PERCENT[status]
    if previous is not None:
        return max(previous, computed)
    return computed
