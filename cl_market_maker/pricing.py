"""
Price model for the power perpetual.

All inputs arrive as decimal strings, exactly as the chain reports its
fixed-point values. Division chains run on `Decimal` so that prices spanning
many orders of magnitude keep their precision until the final float64
conversion.
"""

from __future__ import annotations

import math
import sys
from decimal import Decimal, DivisionByZero, InvalidOperation, localcontext

from cl_market_maker.errors import InvalidInput, PrecisionLoss
from cl_market_maker.models import DerivativeConfig, DerivativeState, PriceSet, QuoteBasis

PRICE_PRECISION = 50


def parse_decimal(value: str, name: str) -> Decimal:
    if value is None or str(value).strip() == "":
        raise InvalidInput(f"{name} is empty")
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation:
        raise InvalidInput(f"invalid {name}: {value}") from None
    if not parsed.is_finite():
        raise InvalidInput(f"invalid {name}: {value}")
    return parsed


def to_float64(value: Decimal) -> float:
    """
    Correctly-rounded float conversion. Values that overflow, underflow to
    zero or land in the subnormal range are rejected.
    """
    result = float(value)
    if not math.isfinite(result):
        raise PrecisionLoss(f"inexact conversion to float64: {value} overflows")
    if value != 0 and abs(result) < sys.float_info.min:
        raise PrecisionLoss(f"inexact conversion to float64: {value} underflows")
    return result


def calculate_mark_price(base_price: str, power_price: str, normalization_factor: str, scale_factor: int) -> float:
    """
    markPrice = (basePrice / powerPrice / normalizationFactor) * scaleFactor
    """
    if not normalization_factor:
        raise InvalidInput("normalization factor is empty")

    base = parse_decimal(base_price, "base price")
    power = parse_decimal(power_price, "power price")
    norm = parse_decimal(normalization_factor, "normalization factor")

    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        try:
            mark = base / power / norm * Decimal(scale_factor)
        except (DivisionByZero, InvalidOperation):
            raise InvalidInput(
                f"mark price undefined for power price {power_price} and normalization factor {normalization_factor}"
            ) from None

    return to_float64(mark)


def calculate_target_price(base_price: str, normalization_factor: str, scale_factor: int) -> float:
    """
    targetPrice = (basePrice * scaleFactor) / (basePrice^2 * normalizationFactor)
    """
    if not normalization_factor:
        raise InvalidInput("normalization factor is empty")

    base = parse_decimal(base_price, "base price")
    norm = parse_decimal(normalization_factor, "normalization factor")

    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        numerator = base * Decimal(scale_factor)
        denominator = base * base * norm
        try:
            target = numerator / denominator
        except (DivisionByZero, InvalidOperation):
            raise InvalidInput(
                f"target price undefined for base price {base_price} and normalization factor {normalization_factor}"
            ) from None

    return to_float64(target)


def calculate_index_price(base_spot_price: str) -> float:
    try:
        spot = float(base_spot_price)
    except (TypeError, ValueError):
        raise InvalidInput(f"invalid base spot price: {base_spot_price}") from None
    return spot * spot


def calculate_premium(mark_price: float, index_price: float) -> float:
    if index_price == 0:
        return 0.0
    return (mark_price - index_price) / index_price


def invert_price(price: str | float | Decimal, name: str = "price") -> Decimal:
    """
    1/price as a Decimal. Floats go through their shortest repr so that e.g.
    0.25 inverts to exactly 4.
    """
    if isinstance(price, Decimal):
        value = price
    elif isinstance(price, float):
        value = parse_decimal(repr(price), name)
    else:
        value = parse_decimal(price, name)

    if value == 0:
        raise InvalidInput(f"cannot invert zero {name}")
    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        return (Decimal(1) / value).normalize()


def derive_quote_basis(prices: PriceSet, state: DerivativeState, config: DerivativeConfig) -> QuoteBasis:
    mark = calculate_mark_price(
        prices.base_spot_price,
        prices.power_spot_price,
        state.normalization_factor,
        config.index_scale,
    )
    index = calculate_index_price(prices.base_spot_price)
    target = calculate_target_price(prices.base_spot_price, state.normalization_factor, config.index_scale)
    return QuoteBasis(
        mark_price=mark,
        index_price=index,
        target_price=target,
        premium=calculate_premium(mark, index),
    )
