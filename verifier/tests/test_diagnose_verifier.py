"""
TouchGrass Verifier — Diagnosis Tool Tests

Coverage:
  - healthy deployment reports no problems
  - unparseable key, unreachable RPC, missing contract code, empty balance
  - RPC failing after the connectivity check is reported, not raised
"""

import os
import sys
from unittest import mock

import pytest
import requests
from eth_account import Account
from web3.exceptions import Web3Exception

# ── Path setup ────────────────────────────────────────────────────────────────
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from engine.config import VerifierSettings
from engine.diagnose_verifier import diagnose

PRIVATE_KEY = "0x" + "4c" * 32


def _settings(**overrides):
    values = dict(
        verifier_private_key=PRIVATE_KEY,
        contract_address="0x" + "ab" * 20,
        openrouter_api_key="sk-or-test",
    )
    values.update(overrides)
    return VerifierSettings(**values)


@pytest.fixture
def web3():
    w3 = mock.MagicMock()
    w3.is_connected.return_value = True
    w3.eth.chain_id = 43113
    w3.eth.get_code.return_value = b"\x60\x80\x60\x40"
    w3.eth.get_balance.return_value = 10 ** 18
    return w3


class TestDiagnose:

    def test_healthy(self, web3):
        report = diagnose(_settings(), web3=web3)
        assert report["problems"] == []
        assert report["verifier_address"] == Account.from_key(PRIVATE_KEY).address
        assert report["chain_id"] == 43113
        assert report["contract_deployed"] is True

    def test_bad_key(self, web3):
        report = diagnose(_settings(verifier_private_key="not-a-key"), web3=web3)
        assert report["verifier_address"] is None
        assert "VERIFIER_PRIVATE_KEY" in report["problems"][0]
        web3.is_connected.assert_not_called()

    def test_rpc_unreachable(self, web3):
        web3.is_connected.return_value = False
        report = diagnose(_settings(), web3=web3)
        assert report["rpc_connected"] is False
        assert "not reachable" in report["problems"][0]

    def test_no_contract_code(self, web3):
        web3.eth.get_code.return_value = b""
        report = diagnose(_settings(), web3=web3)
        assert report["contract_deployed"] is False
        assert any("No contract code" in p for p in report["problems"])

    def test_empty_balance(self, web3):
        web3.eth.get_balance.return_value = 0
        report = diagnose(_settings(), web3=web3)
        assert any("no funds" in p for p in report["problems"])

    @pytest.mark.parametrize("method, exc", [
        ("get_code", requests.ConnectionError("connection reset")),
        ("get_balance", Web3Exception("upstream gone")),
        ("get_code", ConnectionResetError("reset by peer")),
    ])
    def test_rpc_drops_mid_check(self, web3, method, exc):
        getattr(web3.eth, method).side_effect = exc
        report = diagnose(_settings(), web3=web3)
        assert report["rpc_connected"] is True
        assert any("failed mid-check" in p for p in report["problems"])
