"""
TouchGrass Verifier :: Error Taxonomy
=====================================

Every failure the pipeline can produce is one of these exceptions. The
``category`` attribute is the caller-facing bucket; the message and any
chained cause stay server-side and only ever reach the logs.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION_FAILED      = "ValidationFailed"
    EVIDENCE_REJECTED      = "EvidenceRejected"
    EVALUATOR_TIMEOUT      = "EvaluatorTimeout"
    EVALUATOR_RATE_LIMITED = "EvaluatorRateLimited"
    ALREADY_FINALIZED      = "AlreadyFinalized"
    INTERNAL_FAILURE       = "InternalFailure"


class VerifierError(RuntimeError):
    category: ErrorCategory = ErrorCategory.INTERNAL_FAILURE


class ConfigurationError(VerifierError):
    """Raised at startup when required settings are missing or malformed."""


class InvalidRequestError(VerifierError):
    category = ErrorCategory.VALIDATION_FAILED

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class EvidenceRejectedError(VerifierError):
    category = ErrorCategory.EVIDENCE_REJECTED

    def __init__(self, message: str, raw_verdict: str = ""):
        super().__init__(message)
        self.raw_verdict = raw_verdict


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------
class EvaluatorUnavailableError(VerifierError):
    category = ErrorCategory.INTERNAL_FAILURE


class EvaluatorTimeoutError(VerifierError):
    category = ErrorCategory.EVALUATOR_TIMEOUT

    def __init__(self, message: str, timeout_seconds: float):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class EvaluatorRateLimitedError(VerifierError):
    category = ErrorCategory.EVALUATOR_RATE_LIMITED


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------
class AlreadyFinalizedError(VerifierError):
    category = ErrorCategory.ALREADY_FINALIZED

    def __init__(self, message: str, transaction_hash: str = ""):
        super().__init__(message)
        self.transaction_hash = transaction_hash


class LedgerUnavailableError(VerifierError):
    category = ErrorCategory.INTERNAL_FAILURE

    def __init__(self, message: str, transaction_hash: str = ""):
        super().__init__(message)
        self.transaction_hash = transaction_hash
