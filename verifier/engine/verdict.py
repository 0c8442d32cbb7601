"""
Verdict interpretation: the single place that turns evaluator text into an
approve/reject decision.

The rule is deliberately dumb: approve iff the trimmed, upper-cased response
contains "YES". Anything else (empty, "NO", hedging, a refusal) rejects.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

APPROVAL_TOKEN = "YES"


@dataclass(frozen=True)
class Verdict:
    raw:      str
    approved: bool


def interpret_verdict(raw: Optional[str]) -> Verdict:
    text = raw or ""
    return Verdict(raw=text, approved=APPROVAL_TOKEN in text.strip().upper())
