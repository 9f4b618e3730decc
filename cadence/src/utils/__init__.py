"""
Utility modules for cadence.

Provides:
- Structured logging configuration
- Time range helpers shared by the expander, conflict detector and store
"""
