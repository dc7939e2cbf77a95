"""marketpulse – news + market snapshot with rule-based advisory alerts.

Pulls financial headlines (RSS), crypto quotes (CoinGecko) and
equity/index/commodity/ETF quotes (Yahoo Finance or simulated), runs a
fixed set of market-condition rules over the combined picture, and
exposes the result as one immutable ``Snapshot`` refreshed on a timer.

Entry points: ``orchestrator.build_orchestrator()`` for embedding,
``python -m marketpulse.run`` for the standalone loop.
"""
