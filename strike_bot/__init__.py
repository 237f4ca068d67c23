"""Kalshi 15-minute crypto strike market bot.

Aggregates CEX spot quotes into a reference price, reads strike and
direction out of market titles, and decides per market whether to buy
both sides, one side, or nothing.
"""

__version__ = "0.1.0"
