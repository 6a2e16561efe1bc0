"""
Test Utilities

Helpers for exercising the benchmark without a live chain:
- FakeRPCProvider: scripted JSON-RPC endpoint with per-method latency
- RecordingSigner: LocalSigner that keeps every request it signs
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional, Tuple

from web3.providers.async_base import AsyncBaseProvider

from benchmark_clients import LocalSigner

CHAIN_ID = 11124
TX_HASH = '0x' + 'ab' * 32
SYNC_TX_HASH = '0x' + 'cd' * 32


def make_receipt(tx_hash: str) -> Dict[str, Any]:
    return {
        'transactionHash': tx_hash,
        'blockNumber': '0x11',
        'status': '0x1',
        'logs': [],
    }


def default_responses() -> Dict[str, Any]:
    return {
        'eth_chainId': hex(CHAIN_ID),
        'eth_getTransactionCount': '0x0',
        'eth_getBlockByNumber': {'number': '0x10', 'baseFeePerGas': '0x5a'},
        'eth_maxPriorityFeePerGas': '0xa',
        'eth_estimateGas': '0x5208',
        'eth_sendRawTransaction': TX_HASH,
        'eth_getTransactionReceipt': make_receipt(TX_HASH),
        'eth_sendRawTransactionSync': make_receipt(SYNC_TX_HASH),
    }


class FakeRPCProvider(AsyncBaseProvider):
    """
    Scripted JSON-RPC endpoint.

    - responses: method -> result (callables receive the params)
    - latency: seconds per call, or a method -> seconds mapping
    - rpc_errors: method -> message, answered as a JSON-RPC error
    - exceptions: method -> exception raised as a transport failure
    - forbidden: methods that must never reach this provider
    - pending_receipts: number of receipt polls answered with null first
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Any]] = None,
        latency: Any = 0.0,
        rpc_errors: Optional[Dict[str, str]] = None,
        exceptions: Optional[Dict[str, Exception]] = None,
        forbidden: Tuple[str, ...] = (),
        pending_receipts: int = 0,
    ):
        super().__init__()
        self.responses = default_responses()
        self.responses.update(responses or {})
        self.latency = latency
        self.rpc_errors = rpc_errors or {}
        self.exceptions = exceptions or {}
        self.forbidden = forbidden
        self.pending_receipts = pending_receipts
        self.requests: List[Tuple[str, Any]] = []
        self._next_id = 0

    def methods(self) -> List[str]:
        return [method for method, _ in self.requests]

    def _latency_for(self, method: str) -> float:
        if isinstance(self.latency, dict):
            return self.latency.get(method, 0.0)
        return self.latency

    async def make_request(self, method, params):
        if method in self.forbidden:
            raise AssertionError(f"{method} must not reach the transport")

        self.requests.append((method, params))
        self._next_id += 1
        delay = self._latency_for(method)
        if delay:
            await asyncio.sleep(delay)

        if method in self.exceptions:
            raise self.exceptions[method]

        if method in self.rpc_errors:
            return {
                'jsonrpc': '2.0',
                'id': self._next_id,
                'error': {'code': -32000, 'message': self.rpc_errors[method]},
            }

        if method == 'eth_getTransactionReceipt' and self.pending_receipts > 0:
            self.pending_receipts -= 1
            result = None
        else:
            result = self.responses[method]
            if callable(result):
                result = result(params)

        return {'jsonrpc': '2.0', 'id': self._next_id, 'result': copy.deepcopy(result)}

    async def is_connected(self, show_traceback: bool = False) -> bool:
        return True

    async def disconnect(self) -> None:
        pass


class RecordingSigner(LocalSigner):
    """LocalSigner that records each request and can be told to fail"""

    def __init__(self, account, error: Optional[Exception] = None):
        super().__init__(account)
        self.requests: List[Dict[str, Any]] = []
        self.error = error

    async def sign_transaction(self, request: Dict[str, Any]) -> str:
        self.requests.append(dict(request))
        if self.error is not None:
            raise self.error
        return await super().sign_transaction(request)
