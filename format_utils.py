"""
Formatting helpers for benchmark output
"""

from typing import List

from app_config import BLOCK_EXPLORER_URL
from benchmark_runner import BenchmarkResult, Comparison


def truncate_hash(tx_hash: str) -> str:
    """Shorten a transaction hash to "0x1234...5678" for display"""
    if not tx_hash or len(tx_hash) < 10:
        return tx_hash
    return f"{tx_hash[:6]}...{tx_hash[-4:]}"


def format_duration(ms: float) -> str:
    return f"{round(ms)}ms"


def format_number(num: float) -> str:
    return f"{num:,}"


def explorer_url(tx_hash: str, base_url: str = BLOCK_EXPLORER_URL) -> str:
    return f"{base_url.rstrip('/')}/tx/{tx_hash}"


def render_result(result: BenchmarkResult) -> List[str]:
    lines = [
        f"{result.type.label}: {result.status.value.upper()} in "
        f"{format_duration(result.duration_ms)} ({len(result.rpc_calls)} RPC calls)"
    ]
    for call in result.rpc_calls:
        marker = "  ✗" if call.error else "   "
        lines.append(f"{marker} {call.method:<32} {call.duration * 1000:>9.1f}ms")
    if result.error:
        lines.append(f"    Error: {result.error}")
    if result.tx_hash:
        lines.append(f"    Tx: {truncate_hash(result.tx_hash)}  {explorer_url(result.tx_hash)}")
    return lines


def render_comparison(comparison: Comparison) -> str:
    """Plain-text report of a completed run"""
    lines = ["=" * 70, "  Comparison", "=" * 70]
    lines.extend(render_result(comparison.async_result))
    lines.append("")
    lines.extend(render_result(comparison.sync_result))
    lines.append("-" * 70)
    lines.append(
        f"Winner: {comparison.winner.label} by {format_duration(comparison.margin_ms)}")
    lines.append("  Async: eth_sendRawTransaction → eth_getTransactionReceipt (polling)")
    lines.append("  Sync:  eth_sendRawTransactionSync (waits for inclusion)")
    return "\n".join(lines)
