"""
TouchGrass Verifier :: Settings
===============================

Core configuration comes from the environment (``.env`` is loaded by the API
entry point through python-dotenv). Required secrets are checked together so
a misconfigured deployment reports every missing variable at once instead of
failing on the first request. Perimeter knobs (CORS, throttles, body size)
are read by ``api.main`` itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from engine.errors import ConfigurationError

REQUIRED_ENV_VARS = (
    "VERIFIER_PRIVATE_KEY",
    "CONTRACT_ADDRESS",
    "OPENROUTER_API_KEY",
)

DEFAULT_EVALUATOR_TIMEOUT_SECONDS      = 60.0
DEFAULT_LEDGER_GAS_LIMIT               = 200_000
DEFAULT_LEDGER_RECEIPT_TIMEOUT_SECONDS = 120.0


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class VerifierSettings:
    verifier_private_key: str = field(repr=False)
    contract_address:     str
    openrouter_api_key:   str = field(repr=False)

    rpc_url:            str = "http://127.0.0.1:8545"
    site_url:           str = "http://localhost:5173"
    site_name:          str = "TouchGrass"
    evaluator_base_url: str = "https://openrouter.ai/api/v1"
    evaluator_model:    str = "openai/gpt-4o"

    evaluator_timeout_seconds:      float = DEFAULT_EVALUATOR_TIMEOUT_SECONDS
    ledger_gas_limit:               int   = DEFAULT_LEDGER_GAS_LIMIT
    ledger_receipt_timeout_seconds: float = DEFAULT_LEDGER_RECEIPT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "VerifierSettings":
        missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name, "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        return cls(
            verifier_private_key = os.environ["VERIFIER_PRIVATE_KEY"].strip(),
            contract_address     = os.environ["CONTRACT_ADDRESS"].strip(),
            openrouter_api_key   = os.environ["OPENROUTER_API_KEY"].strip(),
            rpc_url              = os.getenv("RPC_URL", "http://127.0.0.1:8545"),
            site_url             = os.getenv("SITE_URL", "http://localhost:5173"),
            site_name            = os.getenv("SITE_NAME", "TouchGrass"),
            evaluator_base_url   = os.getenv("EVALUATOR_BASE_URL", "https://openrouter.ai/api/v1"),
            evaluator_model      = os.getenv("EVALUATOR_MODEL", "openai/gpt-4o"),
            evaluator_timeout_seconds = _get_float(
                "EVALUATOR_TIMEOUT_SECONDS", DEFAULT_EVALUATOR_TIMEOUT_SECONDS
            ),
            ledger_gas_limit = _get_int("LEDGER_GAS_LIMIT", DEFAULT_LEDGER_GAS_LIMIT),
            ledger_receipt_timeout_seconds = _get_float(
                "LEDGER_RECEIPT_TIMEOUT_SECONDS", DEFAULT_LEDGER_RECEIPT_TIMEOUT_SECONDS
            ),
        )
