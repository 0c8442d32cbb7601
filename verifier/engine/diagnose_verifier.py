"""
Run this on the verifier host when every verification ends in
"Verification process failed" or "Challenge may already be verified".

Usage: python -m engine.diagnose_verifier   (from the verifier/ directory)

Checks that the signing key parses, the RPC answers, the contract exists at
CONTRACT_ADDRESS and the verifier address can pay for gas.
"""

from __future__ import annotations

import sys
from typing import Any, Optional

import requests
from dotenv import load_dotenv
from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception

from engine.config import VerifierSettings
from engine.errors import ConfigurationError


def diagnose(settings: VerifierSettings, web3: Optional[Any] = None) -> dict:
    report: dict[str, Any] = {
        "verifier_address": None,
        "rpc_connected":    False,
        "chain_id":         None,
        "contract_address": settings.contract_address,
        "contract_deployed": False,
        "balance_wei":      None,
        "problems":         [],
    }

    try:
        account = Account.from_key(settings.verifier_private_key)
        report["verifier_address"] = account.address
    except Exception as e:     # eth_keys raises its own ValidationError for bad lengths
        report["problems"].append(f"VERIFIER_PRIVATE_KEY is not a valid key: {e}")
        return report

    w3 = web3 or Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": 5}))
    if not w3.is_connected():
        report["problems"].append(f"RPC at {settings.rpc_url} is not reachable")
        return report
    report["rpc_connected"] = True

    try:
        contract = Web3.to_checksum_address(settings.contract_address)
    except ValueError:
        report["problems"].append("CONTRACT_ADDRESS is not a valid address")
        return report

    try:
        report["chain_id"] = w3.eth.chain_id
        code = w3.eth.get_code(contract)
        balance = w3.eth.get_balance(account.address)
    except (Web3Exception, requests.RequestException, OSError) as e:
        report["problems"].append(f"RPC at {settings.rpc_url} failed mid-check: {e}")
        return report

    report["contract_deployed"] = len(code) > 0
    if not report["contract_deployed"]:
        report["problems"].append(f"No contract code at {contract} on chain {report['chain_id']}")

    report["balance_wei"] = balance
    if balance == 0:
        report["problems"].append(f"Verifier {account.address} has no funds for gas")

    return report


def main() -> int:
    load_dotenv()
    try:
        settings = VerifierSettings.from_env()
    except ConfigurationError as e:
        print(f"❌ {e}")
        return 1

    report = diagnose(settings)

    print("=" * 60)
    print("  TOUCHGRASS VERIFIER DIAGNOSIS")
    print("=" * 60)
    print(f"\nVerifier address (from VERIFIER_PRIVATE_KEY): {report['verifier_address']}")
    print(f"RPC connected: {report['rpc_connected']}  chain id: {report['chain_id']}")
    print(f"Contract {report['contract_address']} deployed: {report['contract_deployed']}")
    print(f"Verifier balance: {report['balance_wei']} wei")
    print()
    print("The contract's verifier role must be this address, otherwise every")
    print("verifySuccess() reverts and callers see 'Challenge may already be verified'.")
    print()

    if report["problems"]:
        for problem in report["problems"]:
            print(f"❌ {problem}")
        return 1

    print("✅ No problems found.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
