"""
scrypture-store

File: src/scrypture/__init__.py

Purpose
- Package root for the Scrypture persistence and onboarding core: a typed
  key-value store with backup/restore and the tutorial progression machine.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
