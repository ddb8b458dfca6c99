"""
Backtester package for the rapid-drop pattern system.

Downloads one-second klines from Binance into a per-day cache, replays
them through many detector configurations at once and analyses the
outcome statistics persisted for each configuration.
"""

__all__ = ["analyze", "backtester_main", "binance_rest", "downloader", "kline_cache", "runner"]
