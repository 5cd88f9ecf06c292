#!/usr/bin/env python3
"""
Secure Mint Example - Complete End-to-End Flow

Runs the issuance workflow against the in-memory ledger:
a collateralized mint, a mint rejected for insufficient reserves,
a bridged mint whose bridge leg is refused by policy, and a basket
creation.

Run with: python examples/secure_mint_example.py
"""

import json
import os

from securemint import (
    InMemoryBasketRegistry,
    InMemoryLedger,
    ReserveAggregator,
    StaticReserveSource,
    WorkflowOrchestrator,
    load_workflow_config,
)

HERE = os.path.dirname(os.path.abspath(__file__))
UNITS = 10 ** 18


def load(name: str) -> dict:
    with open(os.path.join(HERE, name), "r", encoding="utf-8") as f:
        return json.load(f)


def print_result(result):
    if result.ok:
        print(f"\n  ✓ {result.instruction_kind} COMPLETED")
        if result.mint_tx:
            print(f"    Mint tx:   {result.mint_tx}")
        if result.bridge_tx:
            print(f"    Bridge tx: {result.bridge_tx}")
        if result.basket:
            print(f"    Asset:     {result.basket.asset_contract}")
            print(f"    Consumer:  {result.basket.enforcement_consumer}")
    else:
        print(f"\n  ✗ {result.kind.value} at {result.stage.value}")
        print(f"    Code:   {result.failure_code.value if result.failure_code else '-'}")
        print(f"    Detail: {result.detail}")
        if result.deficit_amount is not None:
            print(f"    Deficit: {result.deficit_amount}")
        if result.partial:
            print(f"    Mint committed in {result.mint_tx}; bridge leg must be reconciled")


def main():
    print("=" * 70)
    print("Secure Mint - Reserve-Backed Issuance Example")
    print("=" * 70)

    config = load_workflow_config(os.path.join(HERE, "config.json"))
    ledger = InMemoryLedger.from_config(config, initial_supply=900000 * UNITS)
    registry = InMemoryBasketRegistry()
    aggregator = ReserveAggregator([
        StaticReserveSource("1000000", source_id="custodian-a"),
        StaticReserveSource("1000250", source_id="custodian-b"),
        StaticReserveSource("12", source_id="faulty-feed"),
    ])
    orchestrator = WorkflowOrchestrator(config, ledger, aggregator, registry=registry)

    print("\n[SETUP]")
    print("  Reserve attestations: 1,000,000 / 1,000,250 / 12 (median 1,000,000)")
    print("  Outstanding supply:   900,000")

    # =========================================================================
    # SCENARIO 1: Mint within reserves
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 1: Mint 50,000 (reserves cover 950,000)")
    print("-" * 70)

    mint = load("mint.json")
    print_result(orchestrator.run(mint))

    # =========================================================================
    # SCENARIO 2: Insufficient reserves
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 2: Mint 200,000 (projected supply exceeds reserves)")
    print("-" * 70)

    writes_before = ledger.write_count
    print_result(orchestrator.run(dict(mint, transactionId="TXN-20250101-0002", amount="200000")))
    print(f"    Ledger writes during run: {ledger.write_count - writes_before}")

    # =========================================================================
    # SCENARIO 3: Bridge leg refused by policy
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 3: Bridged mint to a blacklisted destination beneficiary")
    print("-" * 70)

    bridged = dict(mint, transactionId="TXN-20250101-0003", amount="1000", crossChain={
        "enabled": True,
        "destinationChain": "ethereum-testnet-sepolia",
        "beneficiary": "0x" + "bb" * 20,
    })
    ledger.blacklist_address("0x" + "bb" * 20)
    print_result(orchestrator.run(bridged))

    # =========================================================================
    # SCENARIO 4: Basket creation
    # =========================================================================

    print("\n" + "-" * 70)
    print("SCENARIO 4: Create a new basket asset")
    print("-" * 70)

    print_result(orchestrator.run(load("basket.json")))

    print("\n" + "-" * 70)
    print("BASKET REGISTRY")
    print("-" * 70)
    for record in registry.list():
        print(f"\n  {record.symbol}: {record.name}")
        print(f"    Admin:    {record.admin}")
        print(f"    Creation: {record.creation_tx_hash}")

    print("\n" + "=" * 70)
    print("Example Complete")
    print("=" * 70)


if __name__ == "__main__":
    main()
