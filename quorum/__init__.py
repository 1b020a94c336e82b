"""Quorum package.

Stake-weighted aggregation of signed operator answers: the aggregator
dispatches tasks discovered on chain to registered operators and publishes
the answer backed by a strict majority of stake.
"""

__version__ = "0.1.0"
