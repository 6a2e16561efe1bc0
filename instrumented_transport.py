"""
Instrumented RPC transport

Wraps a raw web3 async provider and timestamps every JSON-RPC call that goes
through it. Optionally answers eth_chainId from memory so that a prefetched
chain id costs no round trip while still showing up in the call log.
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, List, Optional

from web3.providers.async_base import AsyncBaseProvider
from web3.types import RPCEndpoint, RPCResponse

logger = logging.getLogger(__name__)

CHAIN_ID_METHOD = 'eth_chainId'


@dataclass(frozen=True)
class RPCCallLog:
    """One observed remote call"""
    seq: int
    method: str
    start_time: float
    end_time: float = 0.0
    duration: float = 0.0
    pending: bool = True
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'seq': self.seq,
            'method': self.method,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration_ms': self.duration * 1000,
            'pending': self.pending,
            'error': self.error,
        }


CallObserver = Callable[[RPCCallLog], None]


class InstrumentedProvider(AsyncBaseProvider):
    """
    Async provider that forwards to another provider and reports timing.

    Every call emits a pending RPCCallLog to ``on_start`` before it is
    forwarded and a completed one to ``on_complete`` once it settles, whether
    the underlying call succeeded or raised. Both observers are optional.

    When ``prefetch_chain_id`` is set, eth_chainId is answered with
    ``chain_id`` without touching the wrapped transport.

    Providers reporting into the same log should share one ``sequence``.
    """

    def __init__(
        self,
        transport: AsyncBaseProvider,
        on_complete: Optional[CallObserver] = None,
        on_start: Optional[CallObserver] = None,
        prefetch_chain_id: bool = False,
        chain_id: Optional[int] = None,
        clock: Callable[[], float] = time.perf_counter,
        sequence: Optional[Iterator[int]] = None,
    ):
        super().__init__()
        if prefetch_chain_id and chain_id is None:
            raise ValueError("chain_id is required when prefetch_chain_id is set")

        self.transport = transport
        self.on_complete = on_complete
        self.on_start = on_start
        self.prefetch_chain_id = prefetch_chain_id
        self.chain_id = chain_id
        self._clock = clock
        self._seq = sequence if sequence is not None else itertools.count(1)

    async def make_request(self, method: RPCEndpoint, params: Any) -> RPCResponse:
        seq = next(self._seq)
        start = self._clock()
        if self.on_start is not None:
            self.on_start(RPCCallLog(seq=seq, method=method, start_time=start))

        if self.prefetch_chain_id and method == CHAIN_ID_METHOD:
            response: RPCResponse = {
                'jsonrpc': '2.0',
                'id': seq,
                'result': hex(self.chain_id),
            }
            self._complete(seq, method, start, None)
            logger.debug(f"Short-circuited {method} -> {self.chain_id}")
            return response

        error = None
        try:
            return await self.transport.make_request(method, params)
        except Exception as e:
            error = str(e) or type(e).__name__
            raise
        except asyncio.CancelledError:
            error = "cancelled"
            raise
        finally:
            self._complete(seq, method, start, error)

    def _complete(self, seq: int, method: str, start: float, error: Optional[str]):
        end = self._clock()
        if self.on_complete is not None:
            self.on_complete(RPCCallLog(
                seq=seq,
                method=method,
                start_time=start,
                end_time=end,
                duration=end - start,
                pending=False,
                error=error,
            ))

    async def is_connected(self, show_traceback: bool = False) -> bool:
        return await self.transport.is_connected(show_traceback)

    async def disconnect(self) -> None:
        try:
            await self.transport.disconnect()
        except NotImplementedError:
            # Providers without persistent sessions have nothing to release
            pass


class CallLog:
    """
    Ordered call log for a single flow.

    Entries are correlated by sequence number: a completion replaces the
    pending entry with the same ``seq``, or is appended when the start was
    never observed.
    """

    def __init__(self, on_change: Optional[Callable[[List[RPCCallLog]], None]] = None):
        self.entries: List[RPCCallLog] = []
        self.on_change = on_change
        self._pending: Dict[int, int] = {}

    def record_start(self, call: RPCCallLog):
        self._pending[call.seq] = len(self.entries)
        self.entries.append(replace(call, pending=True, end_time=0.0, duration=0.0))
        self._notify()

    def record_complete(self, call: RPCCallLog):
        completed = replace(call, pending=False)
        index = self._pending.pop(call.seq, None)
        if index is None:
            self.entries.append(completed)
        else:
            self.entries[index] = completed
        self._notify()

    def snapshot(self) -> List[RPCCallLog]:
        return list(self.entries)

    def _notify(self):
        if self.on_change is not None:
            self.on_change(self.snapshot())

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)
