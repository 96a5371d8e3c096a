"""Cardano Portfolio Tracker.

Hourly wallet snapshots, multi-basis allocation drift and advisory
rebalance suggestions for Cardano stake addresses.
"""

__version__ = "0.1.0"
