"""Account and position state as seen by the engine and the brokers."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

PositionSide = Literal["long", "short"]


class PositionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    market: str
    side: PositionSide
    size: float
    avg_entry: float
    unrealized_pnl: float = 0.0
    opened_at: datetime | None = None

    @property
    def entry_notional(self) -> float:
        return self.avg_entry * self.size


class AccountSnapshot(BaseModel):
    """Equity view for one session's account.

    ``gross_exposure_usd`` comes from the broker. When it is not known the
    engine falls back to the entry notional of the open positions.
    """

    model_config = ConfigDict(frozen=True)

    equity: float
    cash_balance: float
    starting_equity: float
    gross_exposure_usd: float | None = None


class SpotBalance(BaseModel):
    asset: str
    available: float
    hold: float = 0.0
    usd_value: float = 0.0


class EngineAccountState(BaseModel):
    """Broker-reported account state used for risk checks."""

    equity_usd: float
    cash_usd: float = 0.0
    net_exposure_usd: float = 0.0
    gross_exposure_usd: float = 0.0
    spot_balances: list[SpotBalance] | None = None
