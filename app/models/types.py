"""
Standard type definitions for database models.

Provides consistent column types for on-chain identifiers and payloads.
"""

from sqlalchemy import JSON, String
from sqlalchemy.dialects.postgresql import JSONB

# 0x-prefixed, 40 hex characters, stored lower-case
AddressType = String(42)

# 0x-prefixed, 64 hex characters
HashType = String(66)

# uint256 rendered as a decimal string (up to 78 digits)
Uint256Type = String(78)

# Raw event payload: JSONB on PostgreSQL, JSON elsewhere (SQLite in tests)
EventPayloadType = JSON().with_variant(JSONB(), "postgresql")
