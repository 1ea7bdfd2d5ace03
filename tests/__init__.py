"""
Test suite for the Location Engine.

Run with: pytest tests/
"""
