"""Venue descriptors: the constraint data the evaluators consult."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from strategy_runner.errors import ConfigurationError


class VenueDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    allows_short: bool = True
    supports_leverage: bool = True
    min_order_usd: float = 0.0

    def short_rejection_message(self) -> str:
        return (
            f"Short selling is not available on {self.display_name} spot markets. "
            "Only long positions are supported."
        )


HYPERLIQUID = VenueDescriptor(
    name="hyperliquid",
    display_name="Hyperliquid",
    allows_short=True,
    supports_leverage=True,
)

COINBASE = VenueDescriptor(
    name="coinbase",
    display_name="Coinbase",
    allows_short=False,
    supports_leverage=False,
    min_order_usd=1.0,
)

VENUES: dict[str, VenueDescriptor] = {v.name: v for v in (HYPERLIQUID, COINBASE)}

DEFAULT_VENUE = HYPERLIQUID.name


def get_venue(name: str | None) -> VenueDescriptor:
    """Resolve a venue name (case-insensitive). Missing names fall back to the default venue."""
    key = (name or DEFAULT_VENUE).lower()
    venue = VENUES.get(key)
    if venue is None:
        raise ConfigurationError(f"Unknown venue: {name}")
    return venue
