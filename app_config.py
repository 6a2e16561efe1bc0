"""
Benchmark configuration

Values are read from the environment (and a local .env file when present).
Defaults target the Abstract testnet, which implements eth_sendRawTransactionSync.
"""

import os
import logging

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# RPC endpoint and chain
RPC_URL = os.getenv('RPC', 'https://api.testnet.abs.xyz')
CHAIN_ID = int(os.getenv('CHAIN_ID', '11124'))

# Block explorer used for transaction links
BLOCK_EXPLORER_URL = os.getenv(
    'BLOCK_EXPLORER_URL', 'https://sepolia.abscan.org')

# Paymaster fields attached to every benchmark transaction (optional)
PAYMASTER_ADDRESS = os.getenv('PAYMASTER_ADDRESS') or None
PAYMASTER_INPUT = os.getenv('PAYMASTER_INPUT') or None

# Receipt polling for the async flow (seconds)
RECEIPT_POLL_LATENCY = float(os.getenv('RECEIPT_POLL_LATENCY', '0.1'))
RECEIPT_TIMEOUT = float(os.getenv('RECEIPT_TIMEOUT', '120'))

# Interval for updating elapsed time during a run (seconds)
TIMER_UPDATE_INTERVAL = float(os.getenv('TIMER_UPDATE_INTERVAL', '0.05'))

# HTTP surface
BENCHMARK_HOST = os.getenv('BENCHMARK_HOST', '0.0.0.0')
BENCHMARK_PORT = int(os.getenv('BENCHMARK_PORT', '8000'))

LOG_LEVEL = getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

APP_METADATA = {
    'title': 'EIP-7966 Synchronous Transactions',
    'description': 'A demo of the eth_sendRawTransactionSync method on Abstract',
    'app_name': 'EIP-7966 Demo',
}
