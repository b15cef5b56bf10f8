# cl_market_maker/positions.py

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from cl_market_maker.errors import UnexpectedPositionCount
from cl_market_maker.log import get_logger
from cl_market_maker.models import (
    Coin,
    CreatePosition,
    OutboundMessage,
    Position,
    TickRange,
    WithdrawPosition,
)

logger = get_logger("cl_market_maker.positions", "POSITIONS")

# slippage tolerance is not managed here
MIN_AMOUNT0 = 0
MIN_AMOUNT1 = 0


@dataclass(frozen=True)
class DefaultSizing:
    """
    Sizing used when no positions are open: token0 is the pool's base
    asset (sell side), token1 its quote asset (buy side).
    """
    token0: Coin
    token1: Coin


def withdraw_messages(positions: Sequence[Position]) -> List[WithdrawPosition]:
    msgs: List[WithdrawPosition] = []
    for p in positions:
        logger.debug(f"position id={p.position_id} liquidity={p.liquidity}")
        msgs.append(WithdrawPosition(position_id=p.position_id, owner=p.owner, liquidity=p.liquidity))
    return msgs


def freed_tokens(positions: Sequence[Position]) -> Tuple[Coin, Coin]:
    """
    Sum asset0 and asset1 across both positions. Denoms are taken from the
    first position.
    """
    first = positions[0]
    token0 = Coin(first.asset0.denom, sum(p.asset0.amount for p in positions))
    token1 = Coin(first.asset1.denom, sum(p.asset1.amount for p in positions))
    return token0, token1


def _coins(*coins: Coin) -> List[Coin]:
    return [c for c in coins if c.amount > 0]


def create_position_msg(pool_id: int, tick_range: TickRange, token: Coin, sender: str) -> CreatePosition:
    return CreatePosition(
        pool_id=pool_id,
        lower_tick=tick_range.lower_tick,
        upper_tick=tick_range.upper_tick,
        tokens_provided=_coins(token),
        sender=sender,
        min_amount0=MIN_AMOUNT0,
        min_amount1=MIN_AMOUNT1,
    )


def reconcile(
    positions: Sequence[Position],
    buy_range: TickRange,
    sell_range: TickRange,
    *,
    pool_id: int,
    sender: str,
    defaults: DefaultSizing,
) -> List[OutboundMessage]:
    """
    Produce the full message list for one cycle: withdraw every open
    position, then create the buy and the sell position.

    - 0 positions: size from the configured defaults.
    - 2 positions: withdraw both and reuse everything they free.
    - anything else: UnexpectedPositionCount, no messages.

    The buy side is funded with token1 (quote) and the sell side with
    token0 (base).
    """
    msgs: List[OutboundMessage] = []

    if len(positions) == 0:
        logger.info("No positions found")
        token0, token1 = defaults.token0, defaults.token1
    elif len(positions) == 2:
        logger.info("Found open positions")
        msgs.extend(withdraw_messages(positions))
        token0, token1 = freed_tokens(positions)
        logger.debug(f"tokens token0={token0.amount}{token0.denom} token1={token1.amount}{token1.denom}")
    else:
        raise UnexpectedPositionCount(len(positions))

    msgs.append(create_position_msg(pool_id, buy_range, token1, sender))
    msgs.append(create_position_msg(pool_id, sell_range, token0, sender))
    return msgs
