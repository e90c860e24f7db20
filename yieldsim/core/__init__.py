"""
Core domain models, mathematical primitives, and invariants.

This package contains the foundational building blocks that are independent
of external systems (exchanges, files, etc.).
"""
