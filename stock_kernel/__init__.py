"""
Stock Kernel

Append-only stock movements with a cached per-item balance:
- Deterministic weighted-average replay of movement history
- Atomic, idempotent balance mutation
- Typed errors with machine-readable codes
- Structured JSON logging
"""

__version__ = "0.1.0"
