#!/usr/bin/env python3
"""
Benchmark End-to-End Test

Drives a running benchmark server over HTTP:
1. Check /health and /config
2. Start a run with POST /benchmark
3. Poll GET /benchmark while both flows are in flight
4. Verify both results and the comparison

The target server must be connected to a chain that implements
eth_sendRawTransactionSync and accepts transactions from fresh accounts.
When no server is reachable the unittest entry point is skipped.
"""

import sys
import time
import argparse
import unittest
from pathlib import Path
from typing import Any, Dict, Optional

import requests

# Add project root to path BEFORE importing local modules
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

from app_config import BENCHMARK_PORT

DEFAULT_SERVER_URL = f"http://localhost:{BENCHMARK_PORT}"


class Colors:
    """ANSI color codes for terminal output"""
    HEADER = '\033[95m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def print_header(text: str):
    print(f"\n{Colors.HEADER}{'=' * 70}")
    print(f"  {text}")
    print(f"{'=' * 70}{Colors.ENDC}\n")


def print_success(text: str):
    print(f"{Colors.OKGREEN}✅ {text}{Colors.ENDC}")


def print_error(text: str):
    print(f"{Colors.FAIL}❌ {text}{Colors.ENDC}")


def print_info(text: str):
    print(f"{Colors.OKCYAN}ℹ️  {text}{Colors.ENDC}")


def server_reachable(server_url: str) -> bool:
    try:
        return requests.get(f"{server_url}/health", timeout=2).status_code == 200
    except requests.exceptions.RequestException:
        return False


class E2ETestOrchestrator:
    """Runs one benchmark through the HTTP API and checks the outcome"""

    def __init__(self, server_url: str = DEFAULT_SERVER_URL,
                 options: Optional[Dict[str, bool]] = None,
                 run_timeout: float = 180.0, poll_interval: float = 0.25):
        self.server_url = server_url.rstrip('/')
        self.options = options or {}
        self.run_timeout = run_timeout
        self.poll_interval = poll_interval
        self.max_partial_calls = {'async': 0, 'sync': 0}

    def check_server(self):
        print_header("Checking Benchmark Server")
        response = requests.get(f"{self.server_url}/health", timeout=5)
        response.raise_for_status()
        if response.json()['benchmark_running']:
            raise Exception("A benchmark is already running on this server")

        config = requests.get(f"{self.server_url}/config", timeout=5).json()
        print_success(f"Server healthy: {config['title']}")
        print_info(f"RPC: {config['rpc_url']} (chain {config['chain_id']})")

    def start_benchmark(self):
        print_header("Starting Benchmark")
        response = requests.post(f"{self.server_url}/benchmark", json=self.options, timeout=5)
        if response.status_code != 202:
            raise Exception(f"Benchmark start failed ({response.status_code}): {response.text}")
        print_success(f"Benchmark started with options {response.json()['options']}")

    def wait_for_completion(self) -> Dict[str, Any]:
        print_header("Waiting for Results")
        deadline = time.time() + self.run_timeout
        while time.time() < deadline:
            status = requests.get(f"{self.server_url}/benchmark", timeout=5).json()
            for kind, flow in status['flows'].items():
                if flow['partial']:
                    calls = len(flow['partial']['rpc_calls'])
                    self.max_partial_calls[kind] = max(self.max_partial_calls[kind], calls)
            if not status['is_running']:
                return status
            time.sleep(self.poll_interval)
        raise Exception(f"Benchmark did not finish within {self.run_timeout}s")

    def verify(self, status: Dict[str, Any]):
        print_header("Verifying Results")
        if status['error']:
            raise Exception(f"Benchmark failed: {status['error']}")

        async_result = status['flows']['async']['result']
        sync_result = status['flows']['sync']['result']
        for result in (async_result, sync_result):
            if result['status'] != 'success':
                raise Exception(f"{result['type']} flow failed: {result['error']}")
            print_success(
                f"{result['type']}: {result['duration_ms']:.0f}ms, "
                f"{len(result['rpc_calls'])} RPC calls, tx {result['tx_hash']}")

        async_methods = [call['method'] for call in async_result['rpc_calls']]
        sync_methods = [call['method'] for call in sync_result['rpc_calls']]
        if 'eth_getTransactionReceipt' not in async_methods:
            raise Exception("Async flow never polled for its receipt")
        if sync_methods.count('eth_sendRawTransactionSync') != 1:
            raise Exception("Sync flow must submit exactly once")
        if 'eth_getTransactionReceipt' in sync_methods:
            raise Exception("Sync flow polled for a receipt")

        comparison = status['comparison']
        print_success(
            f"Winner: {comparison['winner_label']} by {comparison['margin_ms']:.0f}ms")

    def run(self) -> bool:
        try:
            print(f"\n{Colors.BOLD}Benchmark End-to-End Test{Colors.ENDC}")
            print(f"Server: {self.server_url}")

            self.check_server()
            self.start_benchmark()
            status = self.wait_for_completion()
            self.verify(status)

            print(f"\n{Colors.OKGREEN}{Colors.BOLD}{'=' * 70}")
            print(f"  ✅ E2E TEST PASSED!")
            print(f"{'=' * 70}{Colors.ENDC}\n")
            return True

        except Exception as e:
            print_error(f"E2E Test Failed: {e}")
            return False


class TestLiveBenchmark(unittest.TestCase):
    """Full run against the server at DEFAULT_SERVER_URL"""

    def setUp(self):
        if not server_reachable(DEFAULT_SERVER_URL):
            raise unittest.SkipTest(f"No benchmark server at {DEFAULT_SERVER_URL}")

    def test_full_run(self):
        orchestrator = E2ETestOrchestrator(DEFAULT_SERVER_URL, {'chain_id': True})
        self.assertTrue(orchestrator.run())


def main():
    parser = argparse.ArgumentParser(
        description='Benchmark End-to-End Test',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '--server-url',
        default=DEFAULT_SERVER_URL,
        help=f'Benchmark server URL (default: {DEFAULT_SERVER_URL})'
    )
    parser.add_argument('--prefetch-nonce', action='store_true')
    parser.add_argument('--prefetch-gas', action='store_true')
    parser.add_argument('--prefetch-chain-id', action='store_true')
    parser.add_argument(
        '--timeout',
        type=float,
        default=180.0,
        help='Seconds to wait for the run to finish (default: 180)'
    )
    args = parser.parse_args()

    orchestrator = E2ETestOrchestrator(
        server_url=args.server_url,
        options={
            'nonce': args.prefetch_nonce,
            'gas_params': args.prefetch_gas,
            'chain_id': args.prefetch_chain_id,
        },
        run_timeout=args.timeout,
    )
    sys.exit(0 if orchestrator.run() else 1)


if __name__ == "__main__":
    main()
