"""Plutus price feeds, GEMA smoothing, raft leader election, payload tracking, publishing and price storage."""

__version__ = "0.25.1"