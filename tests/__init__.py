"""Test suite for CellContext.

Test organization:
- fixtures/: Synthetic point-pattern generators
- unit/: Unit tests for individual modules

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
