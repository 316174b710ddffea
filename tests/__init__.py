"""
Tests for the Q-Learning Placement Brain
========================================

Run all tests:
    pytest tests/

Run with coverage:
    pytest tests/ --cov=qbrain --cov-report=html
"""
