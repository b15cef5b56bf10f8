"""
Tick math for the concentrated-liquidity venue.

The venue's grid uses an exponent of -6 at price one: within each decade
[10^k, 10^(k+1)) every tick adds 10^(k-6) to the price, and each decade
spans 9,000,000 ticks. Tick 0 is price 1.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import Tuple

from cl_market_maker.errors import RoundingError, TickConversionError, TickOrderingError
from cl_market_maker.log import get_logger
from cl_market_maker.models import TickRange

logger = get_logger("cl_market_maker.ticks", "TICKS")

TICK_SPACING = 100

EXPONENT_AT_PRICE_ONE = -6
TICKS_PER_DECADE = 9_000_000

MIN_SPOT_PRICE = Decimal("1e-12")
MAX_SPOT_PRICE = Decimal("1e38")
MIN_INITIALIZED_TICK = -108_000_000
MAX_TICK = 342_000_000

# headroom for 38 integer digits plus the chain's 36 decimal places
_TICK_PRECISION = 80


def price_to_tick(price: Decimal) -> int:
    """
    Map a price to the index of the tick bucket containing it, ignoring
    tick spacing.
    """
    if price <= 0:
        raise TickConversionError(f"price must be greater than zero: {price}")
    if price < MIN_SPOT_PRICE or price > MAX_SPOT_PRICE:
        raise TickConversionError(
            f"price {price} outside of bounds [{MIN_SPOT_PRICE}, {MAX_SPOT_PRICE}]"
        )
    if price == 1:
        return 0

    with localcontext() as ctx:
        ctx.prec = _TICK_PRECISION
        exponent = price.adjusted()
        initial_price = Decimal(1).scaleb(exponent)
        ticks_filled = (price - initial_price).scaleb(-(exponent + EXPONENT_AT_PRICE_ONE))
        return TICKS_PER_DECADE * exponent + int(ticks_filled.to_integral_value(rounding=ROUND_FLOOR))


def round_down_to_spacing(tick: int, spacing: int = TICK_SPACING) -> int:
    """Round toward negative infinity to a multiple of `spacing`."""
    if spacing <= 0:
        raise RoundingError(f"tick spacing must be positive: {spacing}")

    rounded = tick - tick % spacing
    if rounded < MIN_INITIALIZED_TICK:
        raise RoundingError(f"tick {rounded} is below the minimum initialized tick {MIN_INITIALIZED_TICK}")
    return rounded


def calculate_and_round_price_to_tick(price: Decimal, spacing: int = TICK_SPACING) -> int:
    return round_down_to_spacing(price_to_tick(price), spacing)


def calculate_buy_sell_ticks(
    buy_price: Decimal,
    sell_price: Decimal,
    spread: Decimal,
    spacing: int = TICK_SPACING,
) -> Tuple[int, int, int, int]:
    """
    Returns (buy_tick, buy_lower_tick, sell_tick, sell_upper_tick).

    The spread is applied multiplicatively and every tick is rounded down,
    never to nearest.
    """
    with localcontext() as ctx:
        ctx.prec = _TICK_PRECISION
        buy_lower_bound = buy_price * (1 - spread)
        sell_upper_bound = sell_price * (1 + spread)

    buy_tick = calculate_and_round_price_to_tick(buy_price, spacing)
    buy_lower_tick = calculate_and_round_price_to_tick(buy_lower_bound, spacing)
    sell_tick = calculate_and_round_price_to_tick(sell_price, spacing)
    sell_upper_tick = calculate_and_round_price_to_tick(sell_upper_bound, spacing)

    return buy_tick, buy_lower_tick, sell_tick, sell_upper_tick


def adjust_for_current_tick(
    is_buy: bool,
    current_tick: int,
    lower_tick: int,
    upper_tick: int,
    spacing: int = TICK_SPACING,
) -> Tuple[int, int]:
    """
    Keep a range from straddling the live tick. Returns (lower, upper).
    """
    if lower_tick <= current_tick <= upper_tick:
        if is_buy:
            upper_tick = current_tick - spacing
        else:
            lower_tick = current_tick + spacing

    upper_tick = round_down_to_spacing(upper_tick, spacing)
    lower_tick = round_down_to_spacing(lower_tick, spacing)

    # minimum buffer between the range and the live tick
    if abs(current_tick - lower_tick) < spacing:
        lower_tick += 3 * spacing

    return lower_tick, upper_tick


def quote_ranges(
    buy_price: Decimal,
    sell_price: Decimal,
    spread: Decimal,
    current_tick: int,
    spacing: int = TICK_SPACING,
) -> Tuple[TickRange, TickRange]:
    """
    Build the buy range [low, buy] and the sell range [sell, high] around
    the current tick. The lower of the two prices is always the buy price.
    """
    if sell_price < buy_price:
        buy_price, sell_price = sell_price, buy_price

    buy_tick, low_tick, sell_tick, high_tick = calculate_buy_sell_ticks(buy_price, sell_price, spread, spacing)

    low, buy_upper = adjust_for_current_tick(True, current_tick, low_tick, buy_tick, spacing)
    sell_lower, high = adjust_for_current_tick(False, current_tick, sell_tick, high_tick, spacing)

    logger.debug(
        f"ticks current={current_tick} buy=[{low_tick},{buy_tick}]->[{low},{buy_upper}] "
        f"sell=[{sell_tick},{high_tick}]->[{sell_lower},{high}]"
    )

    if not (low < buy_upper < sell_lower < high):
        raise TickOrderingError(
            f"ticks are in the incorrect order: low={low} buy={buy_upper} sell={sell_lower} high={high}"
        )

    return TickRange(low, buy_tick, buy_upper), TickRange(sell_lower, sell_tick, high)
