"""
Cost estimation - fiat price of storing a payload, shown before saving.

    fee_units = (payload_size + fixed_overhead_bytes) * fee_rate
    cost      = fee_units / units_per_coin * exchange_rate
    shown     = min(cost, cost_cap)

The cap (one cent by default) is product policy: the displayed figure has a
predictable upper bound and intentionally under-reports the real cost of
very large payloads. It saturates downward only; it never raises a cost.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal
from typing import Optional, Union

from cellchain.core.config import LedgerConfig
from cellchain.utils.logger import get_logger

logger = get_logger("cost")

Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class CostEstimate:
    """Fee and fiat cost for one payload."""
    payload_size: int
    fee_units: int
    uncapped_cost: Decimal
    cost: Decimal

    @property
    def capped(self) -> bool:
        return self.cost < self.uncapped_cost


def _decimal(value: Number) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def estimate_cost(
    payload_size_bytes: int,
    fee_rate_per_byte: Number,
    exchange_rate: Number,
    config: Optional[LedgerConfig] = None,
) -> CostEstimate:
    """
    Estimate the capped fiat cost of storing a payload.

    Args:
        payload_size_bytes: Payload size in bytes
        fee_rate_per_byte: Fee in ledger units per byte
        exchange_rate: Fiat price of one coin
        config: Overhead, unit and cap parameters

    Returns:
        CostEstimate with ``cost <= config.cost_cap``

    Raises:
        ValueError: negative size, rate or exchange rate
    """
    config = config or LedgerConfig()
    if payload_size_bytes < 0:
        raise ValueError("payload_size_bytes cannot be negative")

    rate = _decimal(fee_rate_per_byte)
    price = _decimal(exchange_rate)
    if rate < 0 or price < 0:
        raise ValueError("fee rate and exchange rate cannot be negative")

    fee = (payload_size_bytes + config.fixed_overhead_bytes) * rate
    uncapped = fee / config.units_per_coin * price
    cost = min(uncapped, config.cost_cap)

    if cost < uncapped:
        logger.debug(f"Cost {uncapped} for {payload_size_bytes} bytes capped at {cost}")

    return CostEstimate(
        payload_size=payload_size_bytes,
        fee_units=int(fee.to_integral_value(rounding=ROUND_CEILING)),
        uncapped_cost=uncapped,
        cost=cost,
    )
