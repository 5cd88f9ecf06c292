#!/usr/bin/env python3
"""
Secure Mint Command Line Interface

Usage:
    securemint run <instruction.json> [--config <file>] [--simulate]
    securemint encode <instruction.json> [--decimals 18]
    securemint hash --file <file>
    securemint keygen [--output <file>]

Exit codes for ``run``:
    0  success
    1  business rejection (reserves or policy)
    2  malformed instruction
    3  infrastructure failure or missing configuration
"""

import argparse
import json
import sys
from typing import List, Optional


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


EXIT_SUCCESS = 0
EXIT_REJECTED = 1
EXIT_MALFORMED = 2
EXIT_INFRASTRUCTURE = 3


def exit_code_for(result) -> int:
    from securemint.workflow import ResultKind

    if result.kind == ResultKind.SUCCESS:
        return EXIT_SUCCESS
    if result.kind == ResultKind.MALFORMED_INSTRUCTION:
        return EXIT_MALFORMED
    if result.is_business_rejection:
        return EXIT_REJECTED
    return EXIT_INFRASTRUCTURE


def cmd_run(args):
    """Run one instruction through the workflow."""
    from securemint.baskets import InMemoryBasketRegistry, JsonFileBasketRegistry
    from securemint.config import BASKET_REGISTRY_PATH, LOG_JSON, LOG_LEVEL, load_workflow_config
    from securemint.errors import ConfigurationError
    from securemint.logging_config import configure_logging
    from securemint.workflow import build_orchestrator

    configure_logging(level=LOG_LEVEL, json_format=LOG_JSON, log_file=args.log_file)

    try:
        config = load_workflow_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_INFRASTRUCTURE

    if args.simulate:
        registry = InMemoryBasketRegistry()
    else:
        registry = JsonFileBasketRegistry(args.registry or BASKET_REGISTRY_PATH)

    try:
        orchestrator = build_orchestrator(
            config,
            registry=registry,
            simulate=args.simulate,
            initial_supply=args.initial_supply
        )
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_INFRASTRUCTURE

    with open(args.instruction, 'rb') as f:
        raw = f.read()

    result = orchestrator.run(raw)
    output = result.to_dict()

    if args.output:
        save_json(output, args.output)
        print(f"Result saved to: {args.output}")
    else:
        print(json.dumps(output, indent=2))

    code = exit_code_for(result)
    if code == EXIT_SUCCESS:
        print(f"\n✓ {result.instruction_kind} completed", file=sys.stderr)
    else:
        print(f"\n✗ {result.kind.value} at {result.stage.value}: {result.detail}", file=sys.stderr)
        if result.partial:
            print(f"  mint committed in {result.mint_tx}; bridging did not complete", file=sys.stderr)
    return code


def cmd_encode(args):
    """Print the canonical report payload for an instruction."""
    from securemint.collateral import to_exact_base_units
    from securemint.encoding import CreateBasketReport, EncodingError, MintReport, payload_layout
    from securemint.errors import MalformedInstruction
    from securemint.hashing import report_id
    from securemint.instruction import MintInstruction, parse_instruction

    try:
        instruction = parse_instruction(load_json(args.instruction), decimals=args.decimals)
        if isinstance(instruction, MintInstruction):
            report = MintReport(
                recipient=args.recipient or instruction.beneficiary_account,
                amount=to_exact_base_units(instruction.amount, args.decimals),
                bank_reference=instruction.bank_reference,
            )
        else:
            report = CreateBasketReport(name=instruction.name, symbol=instruction.symbol, admin=instruction.admin)
    except MalformedInstruction as e:
        print(f"Malformed instruction ({e.code.value}): {e.message}", file=sys.stderr)
        return EXIT_MALFORMED

    try:
        payload = report.encode()
    except EncodingError as e:
        print(f"Cannot encode report: {e}", file=sys.stderr)
        return EXIT_MALFORMED

    print(json.dumps({
        "report_type": type(report).__name__,
        "report_id": report_id(payload),
        "payload_hex": "0x" + payload.hex(),
        "words": [{"offset": offset, "word": word} for offset, word in payload_layout(payload)],
    }, indent=2))
    return EXIT_SUCCESS


def cmd_hash(args):
    """Compute content hash of a JSON file."""
    from securemint.hashing import content_hash

    data = load_json(args.file)
    print(content_hash(data))


def cmd_keygen(args):
    """Generate an Ed25519 report-signing key pair."""
    import base64
    from securemint.signing import ReportSigner

    signer = ReportSigner()
    key_id = args.key_id or "kid:report-signer-001"
    key_pair = signer.generate_key_pair(key_id, validity_days=args.validity_days or 90)

    trust_store = {
        "version": "1.0.0",
        "keys": [key_pair.to_trust_store_entry()]
    }

    if args.output:
        save_json(trust_store, args.output)
        print(f"Trust store saved to: {args.output}")
        print(f"Signing key (keep secret): {base64.b64encode(key_pair.seed).decode()}")
    else:
        print("Trust Store:")
        print(json.dumps(trust_store, indent=2))
        print(f"\nSigning Key (keep secret): {base64.b64encode(key_pair.seed).decode()}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="securemint",
        description="Secure issuance workflow for a reserve-backed asset"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # run
    run_parser = subparsers.add_parser("run", help="Run an instruction")
    run_parser.add_argument("instruction", help="Instruction JSON file")
    run_parser.add_argument("-c", "--config", help="Workflow configuration JSON file")
    run_parser.add_argument("-s", "--simulate", action="store_true", help="Use the in-memory ledger")
    run_parser.add_argument("--initial-supply", type=int, default=0, help="Simulated supply in base units")
    run_parser.add_argument("-r", "--registry", help="Basket registry JSON file")
    run_parser.add_argument("-o", "--output", help="Output file for the result")
    run_parser.add_argument("--log-file", help="Also write logs to this file")

    # encode
    encode_parser = subparsers.add_parser("encode", help="Print canonical report payload")
    encode_parser.add_argument("instruction", help="Instruction JSON file")
    encode_parser.add_argument("-d", "--decimals", type=int, default=18, help="Asset decimals")
    encode_parser.add_argument("--recipient", help="Override the mint recipient")

    # hash
    hash_parser = subparsers.add_parser("hash", help="Compute content hash")
    hash_parser.add_argument("-f", "--file", required=True, help="JSON file to hash")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate report-signing key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for trust store")
    keygen_parser.add_argument("-k", "--key-id", help="Key identifier")
    keygen_parser.add_argument("-v", "--validity-days", type=int, help="Validity in days")

    args = parser.parse_args(argv)

    if args.command == "run":
        return cmd_run(args)
    elif args.command == "encode":
        return cmd_encode(args)
    elif args.command == "hash":
        cmd_hash(args)
    elif args.command == "keygen":
        cmd_keygen(args)
    else:
        parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
