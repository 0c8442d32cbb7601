"""
TouchGrass Verifier :: Request & Outcome Models
===============================================

VerificationRequest is the only input the pipeline accepts. It is built once
per attempt from whatever the perimeter forwarded and is never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from engine.errors import ErrorCategory, InvalidRequestError

MAX_TITLE_LENGTH = 500
_UINT256_MAX     = 2 ** 256 - 1


def _parse_challenge_id(value: Any) -> int:
    # bool is an int subclass; True must not become challenge #1
    if value is None or isinstance(value, bool):
        raise InvalidRequestError("challengeId is required", field="challengeId")

    if isinstance(value, int):
        challenge_id = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise InvalidRequestError("challengeId must be an integer", field="challengeId")
        challenge_id = int(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidRequestError("challengeId is required", field="challengeId")
        try:
            challenge_id = int(text, 10)
        except ValueError:
            raise InvalidRequestError(
                f"challengeId must be a valid number, got {value!r}", field="challengeId"
            ) from None
    else:
        raise InvalidRequestError(
            f"challengeId has unsupported type {type(value).__name__}", field="challengeId"
        )

    if not 0 <= challenge_id <= _UINT256_MAX:
        raise InvalidRequestError("challengeId out of uint256 range", field="challengeId")
    return challenge_id


@dataclass(frozen=True)
class VerificationRequest:
    challenge_id: int
    title:        str
    evidence:     str   # image URL or data: URI, forwarded to the evaluator untouched

    @classmethod
    def parse(cls, challenge_id: Any, title: Any, evidence: Any) -> "VerificationRequest":
        """Validate raw perimeter values. Raises InvalidRequestError."""
        cid = _parse_challenge_id(challenge_id)

        if not isinstance(title, str) or not title.strip():
            raise InvalidRequestError("title must be a non-empty string", field="title")
        if len(title) > MAX_TITLE_LENGTH:
            raise InvalidRequestError(
                f"title is {len(title)} characters (max {MAX_TITLE_LENGTH})", field="title"
            )

        if not isinstance(evidence, str) or not evidence.strip():
            raise InvalidRequestError("imageUrl must be a non-empty string", field="imageUrl")

        return cls(challenge_id=cid, title=title, evidence=evidence.strip())


@dataclass(frozen=True)
class VerificationSuccess:
    transaction_hash: str
    success: bool = True

    def to_response(self) -> dict:
        return {"success": True, "txHash": self.transaction_hash}


@dataclass(frozen=True)
class VerificationFailure:
    category:    ErrorCategory
    message:     str
    http_status: int
    success: bool = False

    def to_response(self) -> dict:
        return {
            "success":  False,
            "message":  self.message,
            "category": self.category.value,
        }


VerificationOutcome = Union[VerificationSuccess, VerificationFailure]
