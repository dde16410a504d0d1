"""
Tracked contract configuration.

Immutable description of every contract the indexer may follow,
loaded once at startup together with the rest of the settings.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.config.constants import DEFAULT_CHAIN_ID
from app.utils.validation import is_valid_address

SUPPORTED_EVENTS = ("Transfer", "Approval")

# USDC (PoS) on Polygon
USDC_POLYGON_ADDRESS = "0x2791bca1f2de4661ed88a30c99a7a9449aa84174"


class TrackedContract(BaseModel):
    """One tracked entity: a contract address on a chain."""

    model_config = ConfigDict(frozen=True)

    address: str
    chain_id: int = Field(default=DEFAULT_CHAIN_ID, gt=0)
    start_block: int | Literal["latest"] = "latest"
    events: tuple[str, ...] = SUPPORTED_EVENTS
    enabled: bool = True

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        """Validate and lower-case the contract address."""
        if not is_valid_address(v):
            raise ValueError(f"Invalid contract address: {v!r}")
        return v.lower()

    @field_validator("start_block")
    @classmethod
    def validate_start_block(cls, v: int | str) -> int | str:
        """Start block must be a non-negative number or 'latest'."""
        if isinstance(v, int) and v < 0:
            raise ValueError("start_block must be >= 0 or 'latest'")
        return v

    @field_validator("events")
    @classmethod
    def validate_events(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Only events the applier understands may be tracked."""
        if not v:
            raise ValueError("At least one event must be tracked")
        unknown = [name for name in v if name not in SUPPORTED_EVENTS]
        if unknown:
            raise ValueError(f"Unsupported events: {', '.join(unknown)}")
        return tuple(dict.fromkeys(v))


def default_contracts() -> list[TrackedContract]:
    """Contracts tracked when INDEXED_CONTRACTS is not set."""
    return [TrackedContract(address=USDC_POLYGON_ADDRESS)]


class ContractRegistry:
    """Lookup over the configured tracked contracts."""

    def __init__(self, contracts: list[TrackedContract]) -> None:
        self._contracts = {c.address: c for c in contracts}

    def get(self, address: str) -> TrackedContract | None:
        """Find a contract by address, case-insensitively."""
        return self._contracts.get(address.lower())

    def all(self) -> list[TrackedContract]:
        return list(self._contracts.values())

    def enabled(self) -> list[TrackedContract]:
        return [c for c in self._contracts.values() if c.enabled]

    def __len__(self) -> int:
        return len(self._contracts)


def get_contract_registry() -> ContractRegistry:
    """Build the registry from the global settings."""
    from app.config.settings import settings

    return ContractRegistry(settings.indexed_contracts)
