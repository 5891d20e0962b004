"""Error taxonomy for the tick pipeline."""


class StrategyRunnerError(Exception):
    """Base class for strategy runner errors."""


class ConfigurationError(StrategyRunnerError):
    """Session, strategy or account wiring is unusable for this tick."""


class BrokerError(StrategyRunnerError):
    """A venue adapter could not serve a read."""


class MarketDataError(StrategyRunnerError):
    """No usable price for the requested market."""
