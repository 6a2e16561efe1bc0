#!/usr/bin/env python3
"""
EIP-7966 Benchmark Server

HTTP surface for the transaction benchmark. A run is started with
POST /benchmark and observed with GET /benchmark, which exposes the live call
log and elapsed time of both flows while they are in flight.
"""

import asyncio
import copy
import logging
import threading
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from app_config import (
    APP_METADATA,
    BENCHMARK_HOST,
    BENCHMARK_PORT,
    BLOCK_EXPLORER_URL,
    CHAIN_ID,
    LOG_LEVEL,
    PAYMASTER_ADDRESS,
    RPC_URL,
    TIMER_UPDATE_INTERVAL,
)
from benchmark_runner import BenchmarkResult, FlowKind
from prefetch import PrefetchOptions
from transaction_benchmark import BenchmarkPhase, PartialResult, TransactionBenchmark

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


class BenchmarkService:
    """
    Runs benchmarks on a background thread and keeps a JSON-ready status.

    Observer callbacks arrive on the benchmark thread; readers on request
    threads only ever see copies taken under the lock.
    """

    def __init__(self, **benchmark_kwargs):
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._busy = False
        self.status = self._empty_status(PrefetchOptions())
        self.benchmark = TransactionBenchmark(
            on_partial=self._on_partial,
            on_elapsed=self._on_elapsed,
            on_result=self._on_result,
            on_phase=self._on_phase,
            **benchmark_kwargs,
        )

    @staticmethod
    def _empty_status(options: PrefetchOptions) -> Dict[str, Any]:
        return {
            'phase': BenchmarkPhase.IDLE.value,
            'is_running': False,
            'options': options.to_dict(),
            'flows': {
                kind.value: {'elapsed_ms': 0, 'partial': None, 'result': None}
                for kind in FlowKind
            },
            'comparison': None,
            'error': None,
        }

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._busy

    def start(self, options: PrefetchOptions) -> bool:
        """Start a run; returns False if one is already in flight"""
        with self._lock:
            if self._busy:
                return False
            self._busy = True
            self.status = self._empty_status(options)
            self.status['is_running'] = True

        self._thread = threading.Thread(
            target=self._run, args=(options,), daemon=True)
        try:
            self._thread.start()
        except RuntimeError:
            self._thread = None
            with self._lock:
                self.status['is_running'] = False
                self._busy = False
            raise
        return True

    def wait(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self.status)

    def _run(self, options: PrefetchOptions):
        try:
            run = asyncio.run(self.benchmark.run(options))
            with self._lock:
                self.status['comparison'] = run.comparison.to_dict()
        except Exception as e:
            logger.error(f"❌ Benchmark run failed: {e}", exc_info=True)
            with self._lock:
                self.status['error'] = str(e)
        finally:
            with self._lock:
                self.status['is_running'] = False
                self._busy = False

    def _on_partial(self, kind: FlowKind, partial: Optional[PartialResult]):
        with self._lock:
            self.status['flows'][kind.value]['partial'] = partial.to_dict() if partial else None

    def _on_elapsed(self, kind: FlowKind, elapsed: float):
        with self._lock:
            self.status['flows'][kind.value]['elapsed_ms'] = elapsed * 1000

    def _on_result(self, result: BenchmarkResult):
        with self._lock:
            self.status['flows'][result.type.value]['result'] = result.to_dict()

    def _on_phase(self, phase: BenchmarkPhase):
        with self._lock:
            self.status['phase'] = phase.value


app = Flask(__name__)
service = BenchmarkService()


@app.route('/health')
def health():
    """Health check endpoint"""
    return jsonify({
        'status': 'healthy',
        'benchmark_running': service.is_busy,
    })


@app.route('/config')
def config():
    """Static configuration of this benchmark instance"""
    return jsonify({
        **APP_METADATA,
        'rpc_url': RPC_URL,
        'chain_id': CHAIN_ID,
        'block_explorer_url': BLOCK_EXPLORER_URL,
        'paymaster': PAYMASTER_ADDRESS,
        'timer_update_interval_ms': TIMER_UPDATE_INTERVAL * 1000,
    })


@app.route('/benchmark', methods=['GET', 'POST'])
def benchmark():
    """
    GET: current phase, per-flow elapsed time, live call logs and results.
    POST: start a run with the given prefetch options
          ({"nonce": bool, "gas_params": bool, "chain_id": bool}).
    """
    if request.method == 'GET':
        return jsonify(service.snapshot())

    body = None
    if request.get_data():
        body = request.get_json(force=True, silent=True)
        if body is None:
            return jsonify({'success': False, 'error': 'Request body must be a JSON object'}), 400

    try:
        options = PrefetchOptions.from_dict(body)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    try:
        started = service.start(options)
    except Exception as e:
        logger.error(f"Failed to start benchmark: {e}", exc_info=True)
        return jsonify({'success': False, 'error': str(e)}), 500

    if not started:
        return jsonify({
            'success': False,
            'error': 'A benchmark run is already in progress'
        }), 409

    logger.info(f"Benchmark started with options {options.to_dict()}")
    return jsonify({'success': True, 'options': options.to_dict()}), 202


if __name__ == '__main__':
    logger.info("=" * 70)
    logger.info(f"{APP_METADATA['title']} - Benchmark Server Starting")
    logger.info(f"RPC: {RPC_URL} (chain {CHAIN_ID})")
    logger.info("=" * 70)

    app.run(host=BENCHMARK_HOST, port=BENCHMARK_PORT, debug=False)
