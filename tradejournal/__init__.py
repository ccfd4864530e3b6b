"""Trade journal core: paper trading engine, indicators and chart position tools."""

__version__ = "1.0.0"
