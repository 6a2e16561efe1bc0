"""
Benchmark orchestrator

Drives one run: two fresh identities, optional prefetching, then the async
and sync flows launched concurrently with their own call logs and elapsed
time tickers. Setup work happens before the tickers start so it never
counts towards either flow's measured duration.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from eth_account import Account

from app_config import (
    CHAIN_ID,
    RECEIPT_POLL_LATENCY,
    RECEIPT_TIMEOUT,
    RPC_URL,
    TIMER_UPDATE_INTERVAL,
)
from benchmark_clients import (
    BenchmarkClients,
    LocalSigner,
    TransportFactory,
    create_benchmark_clients,
    create_setup_client,
    http_transport_factory,
)
from benchmark_runner import (
    BenchmarkResult,
    Comparison,
    FlowKind,
    compare,
    run_async_transaction,
    run_sync_transaction,
)
from instrumented_transport import CallLog, RPCCallLog
from prefetch import PrefetchOptions, PrefetchedGas, prefetch_gas, resolve_starting_nonces

logger = logging.getLogger(__name__)


class BenchmarkPhase(Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"


class BenchmarkInProgressError(RuntimeError):
    """A run was requested while another one is in flight"""


class BenchmarkSetupError(RuntimeError):
    """Identity creation, prefetching or nonce resolution failed"""


@dataclass
class PartialResult:
    """Live view of a flow that has not settled yet"""
    type: FlowKind
    start_time: float
    rpc_calls: List[RPCCallLog] = field(default_factory=list)
    is_complete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type.value,
            'start_time': self.start_time,
            'rpc_calls': [call.to_dict() for call in self.rpc_calls],
            'is_complete': self.is_complete,
        }


@dataclass
class FlowState:
    """Per-flow state owned by the orchestrator"""
    kind: FlowKind
    call_log: CallLog = field(default_factory=CallLog)
    partial: Optional[PartialResult] = None
    result: Optional[BenchmarkResult] = None
    elapsed: float = 0.0
    timer: Optional[asyncio.Task] = None


@dataclass
class BenchmarkRun:
    """Outcome of one complete run"""
    options: PrefetchOptions
    async_result: BenchmarkResult
    sync_result: BenchmarkResult
    prefetched_gas: Optional[PrefetchedGas] = None

    @property
    def comparison(self) -> Comparison:
        return compare(self.async_result, self.sync_result)


class TransactionBenchmark:
    """
    Runs the async and sync flows side by side.

    Observers (all optional):
    - on_partial(kind, PartialResult | None): live call log of a running flow
    - on_elapsed(kind, seconds): ticker updates
    - on_result(BenchmarkResult): a flow settled
    - on_phase(BenchmarkPhase): phase transitions
    """

    def __init__(
        self,
        transport_factory: Optional[TransportFactory] = None,
        chain_id: int = CHAIN_ID,
        account_factory: Callable[[], Any] = Account.create,
        signer_factory: Callable[[Any], Any] = LocalSigner,
        timer_interval: float = TIMER_UPDATE_INTERVAL,
        poll_latency: float = RECEIPT_POLL_LATENCY,
        receipt_timeout: float = RECEIPT_TIMEOUT,
        on_partial: Optional[Callable[[FlowKind, Optional[PartialResult]], None]] = None,
        on_elapsed: Optional[Callable[[FlowKind, float], None]] = None,
        on_result: Optional[Callable[[BenchmarkResult], None]] = None,
        on_phase: Optional[Callable[[BenchmarkPhase], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.transport_factory = transport_factory or http_transport_factory(RPC_URL)
        self.chain_id = chain_id
        self.account_factory = account_factory
        self.signer_factory = signer_factory
        self.timer_interval = timer_interval
        self.poll_latency = poll_latency
        self.receipt_timeout = receipt_timeout
        self.on_partial = on_partial
        self.on_elapsed = on_elapsed
        self.on_result = on_result
        self.on_phase = on_phase
        self._clock = clock

        self.phase = BenchmarkPhase.IDLE
        self.is_running = False
        self.completed = False
        self.flows: Dict[FlowKind, FlowState] = {}
        self.last_run: Optional[BenchmarkRun] = None

    async def run(self, options: Optional[PrefetchOptions] = None) -> BenchmarkRun:
        """Execute one benchmark run; raises BenchmarkInProgressError if one is active"""
        if self.is_running:
            raise BenchmarkInProgressError("A benchmark run is already in progress")
        self.is_running = True
        options = options or PrefetchOptions()

        self.completed = False
        self.flows = {kind: FlowState(kind=kind) for kind in FlowKind}
        opened: List[BenchmarkClients] = []

        try:
            self._set_phase(BenchmarkPhase.PREPARING)
            logger.info(f"Preparing benchmark run with prefetch options {options.to_dict()}")

            try:
                signers = {kind: self.signer_factory(self.account_factory())
                           for kind in FlowKind}

                prefetched_gas = None
                if options.gas_params:
                    setup = create_setup_client(signers[FlowKind.ASYNC], self.transport_factory,
                                                self.chain_id, options.chain_id)
                    opened.append(setup)
                    prefetched_gas = await prefetch_gas(setup.public, setup.address)

                clients = {kind: self._create_flow_clients(kind, signers[kind], options)
                           for kind in FlowKind}
                opened.extend(clients.values())

                setup_clients = [create_setup_client(signers[kind], self.transport_factory,
                                                     self.chain_id, options.chain_id)
                                 for kind in FlowKind]
                opened.extend(setup_clients)
                nonces = dict(zip(FlowKind, await resolve_starting_nonces(setup_clients, options)))
            except Exception as e:
                logger.error(f"Benchmark setup failed: {e}", exc_info=True)
                raise BenchmarkSetupError(f"Benchmark setup failed: {e}") from e

            # Timers start together, right before the flows
            started_at = self._clock()
            self._set_phase(BenchmarkPhase.RUNNING)
            for state in self.flows.values():
                state.partial = PartialResult(type=state.kind, start_time=started_at)
                self._emit_partial(state)
                state.timer = asyncio.create_task(self._tick(state, started_at))

            async_result, sync_result = await asyncio.gather(
                self._run_flow(self.flows[FlowKind.ASYNC], run_async_transaction(
                    clients[FlowKind.ASYNC],
                    nonces[FlowKind.ASYNC],
                    self.flows[FlowKind.ASYNC].call_log.entries,
                    options,
                    prefetched_gas,
                    poll_latency=self.poll_latency,
                    timeout=self.receipt_timeout,
                )),
                self._run_flow(self.flows[FlowKind.SYNC], run_sync_transaction(
                    clients[FlowKind.SYNC],
                    nonces[FlowKind.SYNC],
                    self.flows[FlowKind.SYNC].call_log.entries,
                    options,
                    prefetched_gas,
                )),
            )

            self.completed = True
            self.last_run = BenchmarkRun(
                options=options,
                async_result=async_result,
                sync_result=sync_result,
                prefetched_gas=prefetched_gas,
            )
            comparison = self.last_run.comparison
            logger.info(
                f"Benchmark complete: {comparison.winner.label} wins by {comparison.margin_ms:.1f}ms")
            return self.last_run
        finally:
            await self._reap_timers()
            for client in opened:
                await client.close()
            self._set_phase(BenchmarkPhase.IDLE)
            self.is_running = False

    def _create_flow_clients(self, kind: FlowKind, signer,
                             options: PrefetchOptions) -> BenchmarkClients:
        state = self.flows[kind]
        state.call_log.on_change = lambda calls: self._update_partial(state, calls)
        return create_benchmark_clients(
            signer,
            self.transport_factory,
            self.chain_id,
            on_complete=state.call_log.record_complete,
            on_start=state.call_log.record_start,
            prefetch_chain_id=options.chain_id,
        )

    async def _run_flow(self, state: FlowState, flow) -> BenchmarkResult:
        result = await flow
        # Each flow settles on its own; the other one keeps running
        self._stop_timer(state)
        state.elapsed = result.duration
        state.partial = None
        state.result = result
        self._emit_partial(state)
        if self.on_elapsed is not None:
            self.on_elapsed(state.kind, state.elapsed)
        if self.on_result is not None:
            self.on_result(result)
        return result

    async def _tick(self, state: FlowState, started_at: float):
        while True:
            await asyncio.sleep(self.timer_interval)
            state.elapsed = self._clock() - started_at
            if self.on_elapsed is not None:
                self.on_elapsed(state.kind, state.elapsed)

    def _stop_timer(self, state: FlowState):
        if state.timer is not None:
            state.timer.cancel()

    async def _reap_timers(self):
        timers = [s.timer for s in self.flows.values() if s.timer is not None]
        for state in self.flows.values():
            self._stop_timer(state)
            state.timer = None
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    def _update_partial(self, state: FlowState, calls: List[RPCCallLog]):
        if state.partial is None:
            return
        state.partial.rpc_calls = calls
        self._emit_partial(state)

    def _emit_partial(self, state: FlowState):
        if self.on_partial is not None:
            self.on_partial(state.kind, state.partial)

    def _set_phase(self, phase: BenchmarkPhase):
        self.phase = phase
        if self.on_phase is not None:
            self.on_phase(phase)

    def snapshot(self) -> Dict[str, Any]:
        """Current state for presentation"""
        flows = {}
        for kind, state in self.flows.items():
            flows[kind.value] = {
                'elapsed_ms': state.elapsed * 1000,
                'partial': state.partial.to_dict() if state.partial else None,
                'result': state.result.to_dict() if state.result else None,
            }
        return {
            'phase': self.phase.value,
            'is_running': self.is_running,
            'completed': self.completed,
            'flows': flows,
            'comparison': self.last_run.comparison.to_dict()
            if self.completed and self.last_run else None,
        }
