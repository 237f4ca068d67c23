"""CEX reference prices, market text classification and the lag signal.

Usage::

    source = CexQuoteSource()
    references = await source.scan_references(min_sources=2)
    signal = compute_lag_signal(market, references["BTC"], kalshi_yes_prob=0.55)
"""
