"""
Unit Tests

Individual component tests:
- test_instrumented_transport.py: Call timing, chain id short-circuit, call log
- test_prefetch.py: Prefetch options, gas prefetch, starting nonces
- test_benchmark_runner.py: Parameter builder and both submission protocols
- test_transaction_benchmark.py: Orchestrated runs, phases, tickers
- test_benchmark_server.py: HTTP endpoints
- test_format_utils.py: Report formatting
"""
