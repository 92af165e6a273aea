"""
Scan confirmation filter.

Camera and hardware scanners emit a decode per frame, and misreads are
common. A code is only accepted after it has been read several times in a
row; until then it is just a candidate. The filter is a pure state
transition so the same logic serves a camera, a USB scanner or a replayed
stream in tests.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


REQUIRED_CONFIRMATIONS = 3
MIN_CODE_LENGTH = 4

_CODE_PATTERN = re.compile(r"[A-Za-z0-9\-]+")


@dataclass(frozen=True)
class ScanState:
    """
    last_code/count track the candidate run. confirmed latches the code
    emitted last, so a scanner still pointed at it does not emit it again.
    """
    last_code: Optional[str] = None
    count: int = 0
    confirmed: Optional[str] = None

    def to_dict(self) -> dict:
        return {"last_code": self.last_code, "count": self.count, "confirmed": self.confirmed}

    @classmethod
    def from_dict(cls, data: dict | None) -> "ScanState":
        if not data:
            return cls()
        last_code = data.get("last_code")
        count = data.get("count") or 0
        confirmed = data.get("confirmed")
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            count = 0
        if last_code is not None and not isinstance(last_code, str):
            last_code = None
        if confirmed is not None and not isinstance(confirmed, str):
            confirmed = None
        return cls(last_code=last_code, count=count if last_code else 0, confirmed=confirmed)


EMPTY_STATE = ScanState()


def is_plausible_code(code: object) -> bool:
    """Reject empty, too-short, and non alphanumeric/hyphen reads."""
    if not isinstance(code, str) or len(code) < MIN_CODE_LENGTH:
        return False
    return _CODE_PATTERN.fullmatch(code) is not None


def feed(state: ScanState, code: object) -> tuple[ScanState, Optional[str]]:
    """
    Advance the filter by one decoded read.

    Returns (new_state, confirmed_code). confirmed_code is set exactly once,
    on the read that reaches REQUIRED_CONFIRMATIONS; the counter then resets
    and the code stays latched. Further reads of the latched code are ignored
    until a different plausible code arrives or the filter is reset.
    Implausible reads leave the state untouched.
    """
    if not is_plausible_code(code):
        return state, None

    if code == state.confirmed:
        return state, None

    if code == state.last_code:
        count = state.count + 1
    else:
        count = 1

    if count >= REQUIRED_CONFIRMATIONS:
        return ScanState(confirmed=code), code

    return ScanState(last_code=code, count=count), None


class ScanConfirmationFilter:
    """Stateful driver around feed() for a single input source."""

    def __init__(self, source: str | None = None):
        self.source = source
        self.state = EMPTY_STATE

    def push(self, code: object) -> Optional[str]:
        self.state, confirmed = feed(self.state, code)
        return confirmed

    def switch_source(self, source: str | None) -> None:
        """A new camera/scanner never inherits a half-confirmed candidate."""
        self.source = source
        self.reset()

    def reset(self) -> None:
        self.state = EMPTY_STATE
