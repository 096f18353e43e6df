# app/utils/oracle.py
"""
Token price lookups used for USD valuations of savings.

Rates are fixed-point integers (USD per whole token scaled by 1e18) with the
unix timestamp they were observed at. Callers that need a usable price go
through ``get_fresh_rate``, which refuses rates older than the configured age.
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional, Protocol

from app.core.config import settings
from app.core.errors import NotFound, StalePriceError

logger = logging.getLogger(__name__)

RATE_SCALE = 10 ** 18


@dataclass(frozen=True)
class OracleRate:
    rate: int
    timestamp: int


class PriceOracle(Protocol):
    async def get_rate(self, token_address: str) -> OracleRate:
        ...


class StaticPriceOracle:
    """Serves configured USD rates, stamped at lookup time."""

    def __init__(self, usd_rates: Dict[str, float], clock: Callable[[], float] = time.time):
        self.usd_rates = {address.lower(): rate for address, rate in usd_rates.items()}
        self.clock = clock

    async def get_rate(self, token_address: str) -> OracleRate:
        usd_price = self.usd_rates.get(token_address.lower())
        if usd_price is None:
            raise NotFound(f"No price feed for token {token_address}")
        return OracleRate(
            rate=int(Decimal(str(usd_price)) * RATE_SCALE),
            timestamp=int(self.clock()),
        )


async def get_fresh_rate(
    oracle: PriceOracle,
    token_address: str,
    max_age_seconds: Optional[int] = None,
    now: Optional[float] = None,
) -> OracleRate:
    max_age = settings.ORACLE_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds
    rate = await oracle.get_rate(token_address)
    current = time.time() if now is None else now
    age = current - rate.timestamp
    if age > max_age:
        raise StalePriceError(
            f"Price for {token_address} is {int(age)}s old (limit {max_age}s)"
        )
    return rate


def convert_to_usd(amount: str, decimals: int, rate: OracleRate) -> float:
    tokens = Decimal(int(amount)) / (Decimal(10) ** decimals)
    return float(tokens * Decimal(rate.rate) / RATE_SCALE)
