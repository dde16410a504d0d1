"""
Ledger event value type.

TokenEvent is what the ledger client returns and what the failure sink
stores as raw payload, so it must round-trip through JSON.
"""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class TokenEvent:
    """One decoded log of a tracked contract."""

    transaction_hash: str
    log_index: int
    block_number: int
    block_hash: str
    contract_address: str
    kind: str
    args: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, int]:
        """Natural key identifying the event."""
        return self.transaction_hash.lower(), self.log_index

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.block_number, self.log_index

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenEvent":
        return cls(
            transaction_hash=data["transaction_hash"],
            log_index=int(data["log_index"]),
            block_number=int(data["block_number"]),
            block_hash=data["block_hash"],
            contract_address=data["contract_address"],
            kind=data["kind"],
            args=dict(data.get("args") or {}),
        )
