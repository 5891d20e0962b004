"""MarketSnapshot, IndicatorsSnapshot, feed payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Candle(BaseModel):
    model_config = ConfigDict(frozen=True)

    ts: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class OrderbookLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float
    size: float


class Orderbook(BaseModel):
    model_config = ConfigDict(frozen=True)

    bids: tuple[OrderbookLevel, ...] = ()
    asks: tuple[OrderbookLevel, ...] = ()


class OrderbookTop(BaseModel):
    """Best bid/ask as returned by a market data feed."""

    bid: float
    ask: float
    mid: float


class MarkPrice(BaseModel):
    price: float
    timestamp: datetime


class MarketSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    market: str
    price: float
    bid: float
    ask: float
    mid: float
    timestamp: datetime
    candles: tuple[Candle, ...] | None = None
    orderbook: Orderbook | None = None


class RSIValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: float
    period: int = 14


class ATRValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: float
    period: int = 14


class EMAValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: float
    period: int


class EMAPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    fast: EMAValue | None = None
    slow: EMAValue | None = None


class IndicatorsSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    rsi: RSIValue | None = None
    atr: ATRValue | None = None
    volatility: float | None = None
    ema: EMAPair | None = None
