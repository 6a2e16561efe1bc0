"""
Transaction submission protocols

Two ways of getting a transaction included:

- async: eth_sendRawTransaction, then poll eth_getTransactionReceipt
- sync: eth_sendRawTransactionSync (EIP-7966), which returns the receipt

Both return a BenchmarkResult. Failures are returned as error results and
never raised out of a flow.
"""

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from web3 import AsyncWeb3, Web3
from web3.types import RPCEndpoint

from app_config import (
    PAYMASTER_ADDRESS,
    PAYMASTER_INPUT,
    RECEIPT_POLL_LATENCY,
    RECEIPT_TIMEOUT,
    ZERO_ADDRESS,
)
from benchmark_clients import BenchmarkClients
from instrumented_transport import RPCCallLog
from prefetch import PrefetchOptions, PrefetchedGas, derive_max_fee

logger = logging.getLogger(__name__)

SEND_RAW_TRANSACTION_SYNC = RPCEndpoint('eth_sendRawTransactionSync')


class FlowKind(Enum):
    """Submission protocol under test"""
    ASYNC = "async"    # send, then poll for the receipt
    SYNC = "sync"      # EIP-7966 send-and-wait

    @property
    def label(self) -> str:
        return "Sync (EIP-7966)" if self is FlowKind.SYNC else "Async"


class ResultStatus(Enum):
    SUCCESS = "success"
    ERROR = "error"


# ============================================================================
# Transaction Parameters
# ============================================================================

@dataclass(frozen=True)
class TransactionParams:
    """Transaction request; unset optional fields are filled by preparation"""
    to: str = ZERO_ADDRESS
    value: int = 0
    paymaster: Optional[str] = None
    paymaster_input: Optional[str] = None
    nonce: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    gas: Optional[int] = None
    from_address: Optional[str] = None
    chain_id: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return None not in (self.nonce, self.max_fee_per_gas,
                            self.max_priority_fee_per_gas, self.gas, self.chain_id)

    def to_request(self) -> Dict[str, Any]:
        fields = (
            ('from', self.from_address),
            ('to', self.to),
            ('value', self.value),
            ('nonce', self.nonce),
            ('chainId', self.chain_id),
            ('gas', self.gas),
            ('maxFeePerGas', self.max_fee_per_gas),
            ('maxPriorityFeePerGas', self.max_priority_fee_per_gas),
            ('paymaster', self.paymaster),
            ('paymasterInput', self.paymaster_input),
        )
        return {key: value for key, value in fields if value is not None}


def build_transaction_params(
    options: PrefetchOptions,
    nonce: int,
    prefetched_gas: Optional[PrefetchedGas] = None,
    paymaster: Optional[str] = PAYMASTER_ADDRESS,
    paymaster_input: Optional[str] = PAYMASTER_INPUT,
) -> TransactionParams:
    """
    Assemble transaction parameters for one submission.

    Rules are applied in a fixed order: base fields (zero-value transfer to
    the zero address plus paymaster fields), then the nonce when nonce
    prefetching is on, then the gas fields when gas prefetching is on and a
    prefetched value exists.
    """
    params = TransactionParams(
        to=ZERO_ADDRESS,
        value=0,
        paymaster=paymaster,
        paymaster_input=paymaster_input,
    )

    if options.nonce:
        params = replace(params, nonce=nonce)

    if options.gas_params and prefetched_gas is not None:
        params = replace(
            params,
            max_fee_per_gas=prefetched_gas.max_fee_per_gas,
            max_priority_fee_per_gas=prefetched_gas.max_priority_fee_per_gas,
            gas=prefetched_gas.gas,
        )

    return params


def can_skip_preparation(options: PrefetchOptions,
                         prefetched_gas: Optional[PrefetchedGas]) -> bool:
    return options.all_enabled and prefetched_gas is not None


async def prepare_transaction(w3: AsyncWeb3, address: str,
                              params: TransactionParams) -> TransactionParams:
    """
    Fill every missing field from the network.

    Order: chain id, nonce, fees (latest block base fee + priority fee), gas.
    Fields already present are left untouched and cost no call.
    """
    params = replace(params, from_address=address)

    if params.chain_id is None:
        params = replace(params, chain_id=int(await w3.eth.chain_id))

    if params.nonce is None:
        nonce = await w3.eth.get_transaction_count(address, 'pending')
        params = replace(params, nonce=int(nonce))

    if params.max_fee_per_gas is None or params.max_priority_fee_per_gas is None:
        block = await w3.eth.get_block('latest')
        priority_fee = params.max_priority_fee_per_gas
        if priority_fee is None:
            priority_fee = int(await w3.eth.max_priority_fee)
        max_fee = params.max_fee_per_gas
        if max_fee is None:
            max_fee = derive_max_fee(block.get('baseFeePerGas'), priority_fee)
        params = replace(params, max_fee_per_gas=max_fee,
                         max_priority_fee_per_gas=priority_fee)

    if params.gas is None:
        gas = await w3.eth.estimate_gas({
            'from': address,
            'to': params.to,
            'value': params.value,
        })
        params = replace(params, gas=int(gas))

    return params


async def send_transaction(clients: BenchmarkClients, params: TransactionParams) -> str:
    """Prepare, sign and submit; returns the transaction hash"""
    request = await prepare_transaction(clients.wallet, clients.address, params)
    serialized = await clients.signer.sign_transaction(request.to_request())
    tx_hash = await clients.wallet.eth.send_raw_transaction(serialized)
    return _hash_to_hex(tx_hash)


def _hash_to_hex(value: Any) -> str:
    if isinstance(value, str):
        return value
    return Web3.to_hex(value)


def _elapsed_ms(since: float) -> float:
    return (time.perf_counter() - since) * 1000


def _error_message(e: Exception) -> str:
    return str(e) or type(e).__name__


# ============================================================================
# Results
# ============================================================================

@dataclass(frozen=True)
class BenchmarkResult:
    """Final outcome of one flow"""
    type: FlowKind
    start_time: float
    end_time: float
    duration: float
    tx_hash: str
    status: ResultStatus
    rpc_calls: Tuple[RPCCallLog, ...] = ()
    error: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000

    @property
    def succeeded(self) -> bool:
        return self.status is ResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration_ms': self.duration_ms,
            'tx_hash': self.tx_hash,
            'status': self.status.value,
            'error': self.error,
            'rpc_calls': [call.to_dict() for call in self.rpc_calls],
        }


def _finalize(kind: FlowKind, start_time: float, clock: Callable[[], float],
              tx_hash: str, rpc_calls: List[RPCCallLog],
              error: Optional[Exception] = None) -> BenchmarkResult:
    end_time = clock()
    return BenchmarkResult(
        type=kind,
        start_time=start_time,
        end_time=end_time,
        duration=end_time - start_time,
        tx_hash=tx_hash,
        status=ResultStatus.ERROR if error is not None else ResultStatus.SUCCESS,
        rpc_calls=tuple(rpc_calls),
        error=_error_message(error) if error is not None else None,
    )


# ============================================================================
# Flow A: send + poll
# ============================================================================

async def run_async_transaction(
    clients: BenchmarkClients,
    nonce: int,
    rpc_calls: List[RPCCallLog],
    prefetch_options: PrefetchOptions,
    prefetched_gas: Optional[PrefetchedGas] = None,
    poll_latency: float = RECEIPT_POLL_LATENCY,
    timeout: float = RECEIPT_TIMEOUT,
    clock: Callable[[], float] = time.perf_counter,
) -> BenchmarkResult:
    """
    Submit with eth_sendRawTransaction and poll for the receipt.

    When every parameter was prefetched, preparation is skipped entirely and
    the fully specified request is signed and sent as-is. The receipt wait
    is part of the measured duration.
    """
    start_time = clock()
    logger.info(f"[ASYNC] Transaction started for {clients.address}")
    tx_hash = ""

    try:
        step = time.perf_counter()
        params = build_transaction_params(prefetch_options, nonce, prefetched_gas)
        logger.info(f"[ASYNC] Params prepared in {_elapsed_ms(step):.1f}ms")

        if can_skip_preparation(prefetch_options, prefetched_gas):
            request = replace(params, from_address=clients.address,
                              chain_id=clients.chain_id)

            step = time.perf_counter()
            serialized = await clients.signer.sign_transaction(request.to_request())
            logger.info(f"[ASYNC] Transaction signed in {_elapsed_ms(step):.1f}ms")

            step = time.perf_counter()
            tx_hash = _hash_to_hex(await clients.public.eth.send_raw_transaction(serialized))
            logger.info(f"[ASYNC] sendRawTransaction completed in {_elapsed_ms(step):.1f}ms")
        else:
            step = time.perf_counter()
            tx_hash = await send_transaction(clients, params)
            logger.info(f"[ASYNC] sendTransaction completed in {_elapsed_ms(step):.1f}ms")
        logger.info(f"[ASYNC] Transaction hash: {tx_hash}")

        step = time.perf_counter()
        await clients.public.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency)
        logger.info(f"[ASYNC] waitForTransactionReceipt completed in {_elapsed_ms(step):.1f}ms")

    except Exception as e:
        logger.error(f"[ASYNC] Transaction failed: {e}")
        return _finalize(FlowKind.ASYNC, start_time, clock, tx_hash, rpc_calls, e)

    result = _finalize(FlowKind.ASYNC, start_time, clock, tx_hash, rpc_calls)
    logger.info(f"[ASYNC] Total transaction time: {result.duration_ms:.1f}ms")
    return result


# ============================================================================
# Flow B: EIP-7966 send-and-wait
# ============================================================================

async def run_sync_transaction(
    clients: BenchmarkClients,
    nonce: int,
    rpc_calls: List[RPCCallLog],
    prefetch_options: PrefetchOptions,
    prefetched_gas: Optional[PrefetchedGas] = None,
    clock: Callable[[], float] = time.perf_counter,
) -> BenchmarkResult:
    """
    Submit with eth_sendRawTransactionSync, which returns once included.

    Preparation always runs; it only fetches what was not prefetched. The
    chain id lookup is answered by the transport when chain id prefetching is
    on.
    """
    start_time = clock()
    logger.info(f"[SYNC] Transaction started for {clients.address}")
    tx_hash = ""

    try:
        step = time.perf_counter()
        params = build_transaction_params(prefetch_options, nonce, prefetched_gas)
        logger.info(f"[SYNC] Params prepared in {_elapsed_ms(step):.1f}ms")

        step = time.perf_counter()
        request = await prepare_transaction(clients.wallet, clients.address, params)
        logger.info(f"[SYNC] prepareTransactionRequest completed in {_elapsed_ms(step):.1f}ms")

        step = time.perf_counter()
        serialized = await clients.signer.sign_transaction(request.to_request())
        logger.info(f"[SYNC] Transaction signed in {_elapsed_ms(step):.1f}ms")

        step = time.perf_counter()
        receipt = await clients.public.manager.coro_request(
            SEND_RAW_TRANSACTION_SYNC, [serialized])
        logger.info(f"[SYNC] sendRawTransactionSync completed in {_elapsed_ms(step):.1f}ms")

        tx_hash = _hash_to_hex(receipt['transactionHash'])
        logger.info(f"[SYNC] Transaction hash: {tx_hash}")

    except Exception as e:
        logger.error(f"[SYNC] Transaction failed: {e}")
        return _finalize(FlowKind.SYNC, start_time, clock, tx_hash, rpc_calls, e)

    result = _finalize(FlowKind.SYNC, start_time, clock, tx_hash, rpc_calls)
    logger.info(f"[SYNC] Total transaction time: {result.duration_ms:.1f}ms")
    return result


# ============================================================================
# Comparison
# ============================================================================

@dataclass(frozen=True)
class Comparison:
    winner: FlowKind
    margin: float
    async_result: BenchmarkResult
    sync_result: BenchmarkResult

    @property
    def margin_ms(self) -> float:
        return self.margin * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            'winner': self.winner.value,
            'winner_label': self.winner.label,
            'margin_ms': self.margin_ms,
            'async_duration_ms': self.async_result.duration_ms,
            'sync_duration_ms': self.sync_result.duration_ms,
            'async_rpc_calls': len(self.async_result.rpc_calls),
            'sync_rpc_calls': len(self.sync_result.rpc_calls),
        }


def compare(a: BenchmarkResult, b: BenchmarkResult) -> Comparison:
    """Winner is the lower duration (ties go to async); order of arguments is irrelevant"""
    if a.type is b.type:
        raise ValueError(f"Cannot compare two {a.type.value} results")

    async_result, sync_result = (a, b) if a.type is FlowKind.ASYNC else (b, a)
    winner = FlowKind.SYNC if sync_result.duration < async_result.duration else FlowKind.ASYNC
    return Comparison(
        winner=winner,
        margin=abs(async_result.duration - sync_result.duration),
        async_result=async_result,
        sync_result=sync_result,
    )
