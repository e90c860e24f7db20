"""
Test suite for yieldsim

Contains:
- tests/unit/ : Unit tests for individual modules
"""
