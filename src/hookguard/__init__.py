"""Hookguard - reliable intake for signed webhooks.

Verifies signatures, deduplicates provider retries, retries failed
processing with exponential backoff and records per-event-type metrics.
"""

__version__ = "0.1.0"
