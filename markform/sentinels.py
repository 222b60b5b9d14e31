"""
Skip/abort sentinel tokens used inside value fences and table cells.

Canonical spelling is ``|SKIP|`` / ``|ABORT|``; the older ``%SKIP%`` /
``%ABORT%`` spelling is still read.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .model import AnswerState

SKIP_TOKEN = "|SKIP|"
ABORT_TOKEN = "|ABORT|"

_SENTINEL_RE = re.compile(
    r"^(?P<token>\|SKIP\||\|ABORT\||%SKIP%|%ABORT%)\s*(?:\((?P<reason>.*)\))?\s*$",
    re.DOTALL,
)


@dataclass
class Sentinel:
    state: AnswerState
    reason: Optional[str] = None


def parse_sentinel(text: str) -> Optional[Sentinel]:
    """Return the sentinel encoded in ``text``, or None for ordinary content."""
    match = _SENTINEL_RE.match(text.strip())
    if not match:
        return None
    token = match.group("token")
    state = AnswerState.SKIPPED if "SKIP" in token else AnswerState.ABORTED
    reason = match.group("reason")
    if reason is not None:
        reason = reason.strip() or None
    return Sentinel(state=state, reason=reason)


def contains_sentinel(text: str) -> bool:
    """True when a sentinel token appears anywhere in ``text``."""
    return any(token in text for token in (SKIP_TOKEN, ABORT_TOKEN, "%SKIP%", "%ABORT%"))


def format_sentinel(state: AnswerState, reason: Optional[str] = None) -> str:
    token = SKIP_TOKEN if state == AnswerState.SKIPPED else ABORT_TOKEN
    if reason:
        return f"{token} ({reason})"
    return token
