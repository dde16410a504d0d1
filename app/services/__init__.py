"""
Services.

Business logic layer: ledger access and the synchronization engine.
"""
