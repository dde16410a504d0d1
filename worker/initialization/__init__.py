"""
Worker initialization steps.

Logging, periodic scheduler and shutdown for the indexer worker process.
"""
