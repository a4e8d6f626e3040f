"""
Goal Trader - live football goal tracking and position management.

Tracks many concurrently running matches, polls each one at a cadence set by
its lifecycle phase, turns score changes into goal events and trades them
against a position ledger with graduated profit taking.
"""

__version__ = "0.1.0"
