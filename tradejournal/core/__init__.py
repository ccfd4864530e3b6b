"""Core models, configuration, market data and the paper trading engine."""
