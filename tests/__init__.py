"""
Test suite for the furniture fulfillment API.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_stage_ledger_service.py -v
"""
