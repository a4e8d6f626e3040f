"""
Integration tests for the goal trader.

These tests verify that components work together correctly. The live feed,
prices and Telegram are in-process fakes; no network or database is needed.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
