"""
TouchGrass Verifier :: Outcome Classifier
=========================================

Total mapping from any exception to one caller-facing failure. The caller
gets a fixed message per category. Original exception text, stack traces,
transaction hashes and evaluator output stay in the server logs.
"""

from __future__ import annotations

import logging

from engine.errors import ErrorCategory, VerifierError
from engine.models import VerificationFailure

logger = logging.getLogger("touchgrass.pipeline")

CALLER_MESSAGES: dict[ErrorCategory, str] = {
    ErrorCategory.VALIDATION_FAILED: (
        "Invalid verification request. challengeId must be a number, title a "
        "string of at most 500 characters, imageUrl a string."
    ),
    ErrorCategory.EVIDENCE_REJECTED:
        "AI could not verify the objective based on the photo provided.",
    ErrorCategory.EVALUATOR_TIMEOUT:
        "AI verification timed out. Please try again.",
    ErrorCategory.EVALUATOR_RATE_LIMITED:
        "AI service rate limited. Please try again in a few seconds.",
    ErrorCategory.ALREADY_FINALIZED:
        "Challenge may already be verified or does not exist.",
    ErrorCategory.INTERNAL_FAILURE:
        "Verification process failed. Please try again.",
}

HTTP_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION_FAILED:      400,
    ErrorCategory.EVIDENCE_REJECTED:      400,
    ErrorCategory.EVALUATOR_TIMEOUT:      504,
    ErrorCategory.EVALUATOR_RATE_LIMITED: 429,
    ErrorCategory.ALREADY_FINALIZED:      400,
    ErrorCategory.INTERNAL_FAILURE:       500,
}


def categorize(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, VerifierError):
        return exc.category
    return ErrorCategory.INTERNAL_FAILURE


def failure_for(category: ErrorCategory) -> VerificationFailure:
    return VerificationFailure(
        category    = category,
        message     = CALLER_MESSAGES[category],
        http_status = HTTP_STATUS[category],
    )


def classify_failure(exc: BaseException, challenge_id=None) -> VerificationFailure:
    category = categorize(exc)
    tag = f"#{challenge_id}" if challenge_id is not None else "(unparsed)"

    if category is ErrorCategory.INTERNAL_FAILURE:
        logger.error(
            f"[VERIFY] {tag} internal failure: {type(exc).__name__}: {exc}",
            exc_info=exc,
        )
    else:
        logger.warning(f"[VERIFY] {tag} {category.value}: {exc}")

    return failure_for(category)
