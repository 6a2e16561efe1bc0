#!/usr/bin/env python3
"""
Async vs. Sync Transaction Benchmark

Submits one transaction with eth_sendRawTransaction + receipt polling and one
with eth_sendRawTransactionSync (EIP-7966), concurrently, from two fresh
accounts, and reports the latency of each.

Requires an RPC endpoint that implements eth_sendRawTransactionSync and
sponsors or otherwise accepts transactions from unfunded accounts (e.g. the
Abstract testnet with a paymaster configured).
"""

import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app_config import CHAIN_ID, LOG_LEVEL, RPC_URL
from benchmark_clients import http_transport_factory
from format_utils import format_duration, render_comparison
from prefetch import PrefetchOptions
from transaction_benchmark import BenchmarkSetupError, TransactionBenchmark


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Compare async (send + poll) and sync (EIP-7966) transaction latency',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    parser.add_argument('--rpc-url', type=str, default=RPC_URL,
                        help=f'JSON-RPC endpoint (default: {RPC_URL})')
    parser.add_argument('--chain-id', type=int, default=CHAIN_ID,
                        help=f'Chain id used for prefetching (default: {CHAIN_ID})')
    parser.add_argument('--prefetch-nonce', action='store_true',
                        help='Use a prefetched nonce instead of querying it during the flow')
    parser.add_argument('--prefetch-gas', action='store_true',
                        help='Prefetch fee cap, priority fee and gas limit before the run')
    parser.add_argument('--prefetch-chain-id', action='store_true',
                        help='Answer eth_chainId locally')
    parser.add_argument('--prefetch-all', action='store_true',
                        help='Enable all prefetch options')
    parser.add_argument('--json', action='store_true',
                        help='Print the results as JSON')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log every benchmark step')

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
    )

    options = PrefetchOptions(
        nonce=args.prefetch_nonce or args.prefetch_all,
        gas_params=args.prefetch_gas or args.prefetch_all,
        chain_id=args.prefetch_chain_id or args.prefetch_all,
    )

    benchmark = TransactionBenchmark(
        transport_factory=http_transport_factory(args.rpc_url),
        chain_id=args.chain_id,
        on_result=lambda r: print(
            f"  ✓ {r.type.label} settled: {r.status.value} in {format_duration(r.duration_ms)}"),
    )

    print(f"\nRunning benchmark against {args.rpc_url}")
    print(f"Prefetch options: {options.to_dict()}")

    try:
        run = asyncio.run(benchmark.run(options))
    except BenchmarkSetupError as e:
        print(f"\n❌ {e}")
        return 1

    comparison = run.comparison
    if args.json:
        print(json.dumps({
            'options': options.to_dict(),
            'prefetched_gas': run.prefetched_gas.to_dict() if run.prefetched_gas else None,
            'async': run.async_result.to_dict(),
            'sync': run.sync_result.to_dict(),
            'comparison': comparison.to_dict(),
        }, indent=2))
    else:
        print()
        print(render_comparison(comparison))

    return 0 if run.async_result.succeeded and run.sync_result.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
