"""
TouchGrass Verifier :: Ledger Committer
=======================================

Submits the single authorizing ``verifySuccess(uint256)`` call that finalizes
a challenge, then waits for the transaction to be included.

Signing pipeline:
    1. Fetch pending nonce    : eth_getTransactionCount(verifier, "pending")
    2. Build transaction      : verifySuccess(challengeId), fixed gas ceiling
    3. Sign locally           : eth_account LocalAccount (key never leaves process)
    4. Broadcast              : eth_sendRawTransaction
    5. Wait for receipt       : bounded by receipt_timeout_seconds

Steps 1-4 run under LedgerContext.nonce_lock: one writer per nonce inside this
process. A second verifier process sharing the key is NOT supported.

Per-attempt state machine:
    PENDING ──► SUBMITTED ──► INCLUDED
       │            │
       └────────────┴──► REJECTED
INCLUDED and REJECTED are terminal.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import requests
from eth_account import Account
from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    Web3Exception,
    Web3RPCError,
)

from engine.errors import AlreadyFinalizedError, LedgerUnavailableError

logger = logging.getLogger("touchgrass.ledger")

VERIFIER_ABI = [
    {
        "inputs": [{"internalType": "uint256", "name": "_id", "type": "uint256"}],
        "name": "verifySuccess",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    }
]

RPC_REQUEST_TIMEOUT_SECONDS = 30
RECEIPT_POLL_SECONDS        = 1.0


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------
class CommitState(str, Enum):
    PENDING   = "PENDING"
    SUBMITTED = "SUBMITTED"
    INCLUDED  = "INCLUDED"
    REJECTED  = "REJECTED"


_ALLOWED_TRANSITIONS: dict[CommitState, frozenset] = {
    CommitState.PENDING:   frozenset({CommitState.SUBMITTED, CommitState.REJECTED}),
    CommitState.SUBMITTED: frozenset({CommitState.INCLUDED, CommitState.REJECTED}),
    CommitState.INCLUDED:  frozenset(),
    CommitState.REJECTED:  frozenset(),
}


class InvalidCommitTransition(RuntimeError):
    pass


@dataclass
class CommitAttempt:
    challenge_id:     int
    state:            CommitState = CommitState.PENDING
    transaction_hash: str = ""
    history:          list = field(default_factory=list)

    def advance(self, new_state: CommitState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidCommitTransition(
                f"challenge #{self.challenge_id}: {self.state.value} -> {new_state.value}"
            )
        self.history.append(self.state)
        self.state = new_state
        logger.debug(f"[LEDGER] #{self.challenge_id} {self.history[-1].value} -> {new_state.value}")

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.state]


@dataclass(frozen=True)
class CommitResult:
    transaction_hash: str
    confirmed:        bool


# ---------------------------------------------------------------------------
# Long-lived ledger context
# ---------------------------------------------------------------------------
class LedgerContext:
    """
    Process-wide signing identity + chain connection. Build once at startup
    and share between attempts; the only mutable part is the nonce lock.
    """

    def __init__(
        self,
        web3:                    Any,
        account:                 Any,
        contract:                Any,
        gas_limit:               int   = 200_000,
        receipt_timeout_seconds: float = 120.0,
    ):
        self.web3      = web3
        self.account   = account
        self.contract  = contract
        self.gas_limit = gas_limit
        self.receipt_timeout_seconds = receipt_timeout_seconds
        self.nonce_lock = threading.Lock()

    @property
    def verifier_address(self) -> str:
        return self.account.address

    @classmethod
    def connect(
        cls,
        rpc_url:                 str,
        private_key:             str,
        contract_address:        str,
        gas_limit:               int   = 200_000,
        receipt_timeout_seconds: float = 120.0,
    ) -> "LedgerContext":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": RPC_REQUEST_TIMEOUT_SECONDS}))
        account = Account.from_key(private_key)
        contract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=VERIFIER_ABI,
        )
        logger.info(f"Verifier Ethereum address: {account.address}")
        logger.info(f"Target contract:           {contract.address}")
        return cls(
            web3=w3,
            account=account,
            contract=contract,
            gas_limit=gas_limit,
            receipt_timeout_seconds=receipt_timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings) -> "LedgerContext":
        return cls.connect(
            rpc_url                 = settings.rpc_url,
            private_key             = settings.verifier_private_key,
            contract_address        = settings.contract_address,
            gas_limit               = settings.ledger_gas_limit,
            receipt_timeout_seconds = settings.ledger_receipt_timeout_seconds,
        )


def _is_revert(exc: Exception) -> bool:
    return "revert" in str(exc).lower()


# ---------------------------------------------------------------------------
# Committer
# ---------------------------------------------------------------------------
class LedgerCommitter:
    """
    Usage:
        committer = LedgerCommitter(LedgerContext.from_settings(settings))
        result    = committer.commit(42)     # blocks until included

    One submission per call, never retried here. AlreadyFinalizedError is
    terminal; LedgerUnavailableError may be retried by an operator.
    """

    def __init__(self, context: LedgerContext):
        self.context = context

    def commit(self, challenge_id: int) -> CommitResult:
        attempt = CommitAttempt(challenge_id=challenge_id)
        tx_hash = self._submit(attempt)
        receipt = self._wait_for_inclusion(attempt, tx_hash)

        if receipt.get("status", 0) != 1:
            attempt.advance(CommitState.REJECTED)
            raise AlreadyFinalizedError(
                f"verifySuccess({challenge_id}) reverted in block {receipt.get('blockNumber')}",
                transaction_hash=attempt.transaction_hash,
            )

        attempt.advance(CommitState.INCLUDED)
        logger.info(
            f"[LEDGER] #{challenge_id} confirmed on-chain "
            f"(block={receipt.get('blockNumber')} gasUsed={receipt.get('gasUsed')})"
        )
        return CommitResult(transaction_hash=attempt.transaction_hash, confirmed=True)

    # ------------------------------------------------------------------
    def _submit(self, attempt: CommitAttempt):
        ctx = self.context
        fn  = ctx.contract.functions.verifySuccess(attempt.challenge_id)

        try:
            with ctx.nonce_lock:
                nonce = ctx.web3.eth.get_transaction_count(ctx.account.address, "pending")
                tx = fn.build_transaction({
                    "from":  ctx.account.address,
                    "nonce": nonce,
                    "gas":   ctx.gas_limit,
                })
                signed  = ctx.account.sign_transaction(tx)
                tx_hash = ctx.web3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            attempt.advance(CommitState.REJECTED)
            raise AlreadyFinalizedError(f"verifySuccess({attempt.challenge_id}) rejected: {e}") from e
        except Web3RPCError as e:
            if _is_revert(e):
                attempt.advance(CommitState.REJECTED)
                raise AlreadyFinalizedError(
                    f"verifySuccess({attempt.challenge_id}) rejected by node: {e}"
                ) from e
            raise LedgerUnavailableError(f"RPC error during submission: {e}") from e
        except (Web3Exception, requests.RequestException, OSError) as e:
            raise LedgerUnavailableError(f"Ledger unreachable during submission: {e}") from e

        attempt.transaction_hash = Web3.to_hex(tx_hash)
        attempt.advance(CommitState.SUBMITTED)
        logger.info(f"[LEDGER] #{attempt.challenge_id} transaction sent: {attempt.transaction_hash}")
        return tx_hash

    def _wait_for_inclusion(self, attempt: CommitAttempt, tx_hash) -> dict:
        ctx = self.context
        try:
            return ctx.web3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=ctx.receipt_timeout_seconds,
                poll_latency=RECEIPT_POLL_SECONDS,
            )
        except TimeExhausted as e:
            # Still SUBMITTED: the transaction may land later. Operators
            # reconcile with the logged hash.
            logger.error(
                f"[LEDGER] #{attempt.challenge_id} not included after "
                f"{ctx.receipt_timeout_seconds:g}s (tx={attempt.transaction_hash})"
            )
            raise LedgerUnavailableError(
                "Timed out waiting for inclusion", transaction_hash=attempt.transaction_hash
            ) from e
        except (Web3Exception, requests.RequestException, OSError) as e:
            raise LedgerUnavailableError(
                f"Ledger unreachable while waiting for receipt: {e}",
                transaction_hash=attempt.transaction_hash,
            ) from e
