from services.oracle.aggregator import PriceOracle, is_stable
from services.oracle.feeds import CoinGeckoFeed, PriceFeed, PriceFeedError, PythFeed
from services.oracle.valuation import LAMPORTS_PER_SOL, portfolio_usd, to_usd

__all__ = [
    "PriceOracle",
    "is_stable",
    "PriceFeed",
    "PriceFeedError",
    "PythFeed",
    "CoinGeckoFeed",
    "LAMPORTS_PER_SOL",
    "portfolio_usd",
    "to_usd",
]
