# Folio Auto-Trader - portfolio decision engine
#
# Core decision pipeline:
# - indicators: SMA/EMA/RSI/MACD/Bollinger/ATR composite scorer (-100 to +100)
# - sentiment: weighted keyword scoring over news digests
# - risk: stop-loss, position ceiling, cooldown and daily trade limit flags
# - context: immutable per-symbol snapshot fed to the decision policy
# - decision: Claude-backed decision with a deterministic rule engine fallback
# - sizing: trade sizing and ledger arithmetic for the simulated portfolio
# - orchestrator: one decision cycle across all enabled symbols
# - scheduler: market-hours aware loop around the orchestrator
