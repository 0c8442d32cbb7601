"""
TouchGrass Verifier :: Verification-and-Commit Pipeline
=======================================================

Pipeline:
    1. Request validation          (VerificationRequest.parse)
    2. Evidence evaluation         (EvidenceEvaluator, inside DeadlineGuard)
    3. Verdict interpretation      (interpret_verdict)
    4. Ledger finalization         (LedgerCommitter, only when approved)
    5. Classification              (any failure -> exactly one category)

Collaborators are passed in explicitly. The evaluator and the ledger are
blocking clients and run on worker threads; attempts share no mutable state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from engine.deadline_guard import DeadlineGuard, SystemClock
from engine.errors import EvidenceRejectedError
from engine.ledger_committer import CommitResult
from engine.models import VerificationOutcome, VerificationRequest, VerificationSuccess
from engine.outcome_classifier import classify_failure
from engine.verdict import interpret_verdict

logger = logging.getLogger("touchgrass.pipeline")


async def execute_attempt(
    request:   VerificationRequest,
    evaluator: Any,
    ledger:    Any,
    guard:     DeadlineGuard,
) -> CommitResult:
    """Steps 2-4. Raises a VerifierError (or anything unexpected) on failure."""
    cid = request.challenge_id

    raw = await guard.run(
        asyncio.to_thread(evaluator.evaluate, request.title, request.evidence),
        label=f"evaluation of challenge #{cid}",
    )
    verdict = interpret_verdict(raw)
    logger.info(f"[AI] #{cid} response: {verdict.raw!r}")

    if not verdict.approved:
        raise EvidenceRejectedError(f"Evaluator did not approve challenge #{cid}", raw_verdict=verdict.raw)

    logger.info(f"[VERIFY] #{cid} approved, signing transaction...")
    return await asyncio.to_thread(ledger.commit, cid)


async def verify_claim(
    challenge_id:    Any,
    title:           Any,
    evidence:        Any,
    *,
    evaluator:       Any,
    ledger:          Any,
    clock:           Any   = None,
    timeout_seconds: float = 60.0,
) -> VerificationOutcome:
    """
    Run one attempt end to end. Never raises for pipeline failures: the
    result is either VerificationSuccess or a classified VerificationFailure.
    """
    clock = clock or SystemClock()
    started = clock.monotonic()

    try:
        request = VerificationRequest.parse(challenge_id, title, evidence)
    except Exception as e:
        return classify_failure(e)

    logger.info(f'[VERIFY] Verifying Challenge #{request.challenge_id}: "{request.title}"')
    logger.info(f"[VERIFY]    Image: {request.evidence[:50]}...")

    try:
        guard  = DeadlineGuard(timeout_seconds, clock=clock)
        result = await execute_attempt(request, evaluator, ledger, guard)
    except Exception as e:
        failure = classify_failure(e, challenge_id=request.challenge_id)
        logger.info(
            f"[VERIFY] #{request.challenge_id} failed as {failure.category.value} "
            f"after {clock.monotonic() - started:.2f}s"
        )
        return failure

    logger.info(
        f"[VERIFY] #{request.challenge_id} finalized tx={result.transaction_hash} "
        f"in {clock.monotonic() - started:.2f}s"
    )
    return VerificationSuccess(transaction_hash=result.transaction_hash)


class VerificationPipeline:
    """
    Bundles long-lived collaborators so the HTTP layer holds one object.

    Usage:
        pipeline = VerificationPipeline(evaluator, LedgerCommitter(ctx), timeout_seconds=60)
        outcome  = await pipeline.verify(42, "Run 5km", "https://...")
        body     = outcome.to_response()
    """

    def __init__(self, evaluator, ledger, clock=None, timeout_seconds: float = 60.0):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.evaluator       = evaluator
        self.ledger          = ledger
        self.clock           = clock or SystemClock()
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings) -> "VerificationPipeline":
        from engine.evidence_evaluator import OpenRouterEvaluator
        from engine.ledger_committer import LedgerCommitter, LedgerContext

        return cls(
            evaluator       = OpenRouterEvaluator.from_settings(settings),
            ledger          = LedgerCommitter(LedgerContext.from_settings(settings)),
            timeout_seconds = settings.evaluator_timeout_seconds,
        )

    async def verify(self, challenge_id, title, evidence) -> VerificationOutcome:
        return await verify_claim(
            challenge_id, title, evidence,
            evaluator       = self.evaluator,
            ledger          = self.ledger,
            clock           = self.clock,
            timeout_seconds = self.timeout_seconds,
        )

    def close(self) -> None:
        close = getattr(self.evaluator, "close", None)
        if close is not None:
            close()
