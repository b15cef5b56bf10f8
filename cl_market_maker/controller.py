"""
Event-driven controller.

One consumer drains the trigger queue and runs one reconciliation cycle per
trigger: fetch contract config/state and spot prices, derive the quote
basis, turn it into tick ranges, reconcile against the open positions and
submit. Cycles never overlap and never share state; a failed cycle is
logged with everything gathered so far and the controller goes back to
waiting.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

from cl_market_maker.chain_client import ChainClient
from cl_market_maker.config import MarketMakerConfig
from cl_market_maker.derivative import DerivativeReader
from cl_market_maker.errors import MarketMakerError, QueryError, SubmissionError
from cl_market_maker.log import get_logger, log_event
from cl_market_maker.models import OutboundMessage, TradeTrigger, TxResult
from cl_market_maker.positions import reconcile
from cl_market_maker.pricing import derive_quote_basis, invert_price
from cl_market_maker.submitter import Submitter
from cl_market_maker.ticks import quote_ranges

logger = get_logger("cl_market_maker.controller", "CONTROLLER")

T = TypeVar("T")


class ControllerState(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"


@dataclass
class CycleReport:
    ok: bool
    started_at: float
    finished_at: float
    context: Dict[str, Any] = field(default_factory=dict)
    messages: int = 0
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class Controller:
    def __init__(
        self,
        config: MarketMakerConfig,
        chain: ChainClient,
        reader: DerivativeReader,
        submitter: Submitter,
    ) -> None:
        self.config = config
        self.chain = chain
        self.reader = reader
        self.submitter = submitter
        self.state = ControllerState.IDLE

        # observation only, never read by a cycle
        self.cycles_ok = 0
        self.cycles_failed = 0
        self.last_report: Optional[CycleReport] = None

    async def _query(self, aw: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(aw, timeout=self.config.query_timeout_s)
        except asyncio.TimeoutError:
            raise QueryError(operation, f"timed out after {self.config.query_timeout_s}s") from None

    async def _submit(self, messages: List[OutboundMessage]) -> TxResult:
        try:
            return await asyncio.wait_for(
                self.submitter.submit(self.config.signer_address, messages),
                timeout=self.config.submit_timeout_s,
            )
        except asyncio.TimeoutError:
            raise SubmissionError(f"timed out after {self.config.submit_timeout_s}s") from None

    async def build_messages(self, context: Dict[str, Any]) -> List[OutboundMessage]:
        """
        Everything up to (not including) submission. `context` is filled in
        as values become available so that a failure can be logged with them.
        """
        cfg = self.config
        timeout = cfg.query_timeout_s

        derivative_config, derivative_state = await self.reader.get_config_and_state(timeout=timeout)
        context["normalization_factor"] = derivative_state.normalization_factor
        context["index_scale"] = derivative_config.index_scale
        context["is_open"] = derivative_state.is_open
        context["is_paused"] = derivative_state.is_paused

        # positions are read from and created in the same pool
        pool_id = derivative_config.power_pool.pool_id
        context["power_pool_id"] = pool_id
        if pool_id != cfg.power_pool_id:
            raise QueryError(
                "derivative_config",
                f"contract power pool {pool_id} differs from configured pool {cfg.power_pool_id}",
            )

        prices = await self.chain.spot_prices(derivative_config, timeout=timeout)
        context["base_spot_price"] = prices.base_spot_price
        context["power_spot_price"] = prices.power_spot_price

        basis = derive_quote_basis(prices, derivative_state, derivative_config)
        context["mark_price"] = basis.mark_price
        context["index_price"] = basis.index_price
        context["target_price"] = basis.target_price
        context["premium"] = basis.premium

        # the pool's ticks are quoted in the inverse of the power price
        inverse_target = invert_price(basis.target_price, "target price")
        inverse_power = invert_price(prices.power_spot_price, "power spot price")
        context["inverse_target_price"] = str(inverse_target)
        context["inverse_power_price"] = str(inverse_power)

        positions = await self._query(self.chain.open_positions(pool_id, cfg.signer_address), "open_positions")
        context["positions"] = [
            {
                "id": p.position_id,
                "liquidity": str(p.liquidity),
                "asset0": f"{p.asset0.amount}{p.asset0.denom}",
                "asset1": f"{p.asset1.amount}{p.asset1.denom}",
            }
            for p in positions
        ]

        current_tick = await self._query(self.chain.current_tick(pool_id), "current_tick")
        context["current_tick"] = current_tick

        log_event(logger, "CYCLE_SUMMARY", level=logging.DEBUG, **context)

        buy_range, sell_range = quote_ranges(
            inverse_power,
            inverse_target,
            cfg.spread,
            current_tick,
            cfg.tick_spacing,
        )
        context["buy_range"] = (buy_range.lower_tick, buy_range.upper_tick)
        context["sell_range"] = (sell_range.lower_tick, sell_range.upper_tick)

        return reconcile(
            positions,
            buy_range,
            sell_range,
            pool_id=pool_id,
            sender=cfg.signer_address,
            defaults=cfg.default_sizing(),
        )

    async def run_cycle(self) -> CycleReport:
        """Run one cycle to completion. Never raises MarketMakerError."""
        started = time.time()
        context: Dict[str, Any] = {}
        self.state = ControllerState.PROCESSING
        log_event(logger, "CYCLE_START")

        try:
            messages = await self.build_messages(context)
            result = await self._submit(messages)
        except MarketMakerError as exc:
            report = CycleReport(
                ok=False,
                started_at=started,
                finished_at=time.time(),
                context=context,
                error=f"{type(exc).__name__}: {exc}",
            )
            self.cycles_failed += 1
            log_event(logger, "CYCLE_FAILED", level=logging.ERROR, error=report.error, **context)
        except Exception as exc:
            report = CycleReport(
                ok=False,
                started_at=started,
                finished_at=time.time(),
                context=context,
                error=f"{type(exc).__name__}: {exc}",
            )
            self.cycles_failed += 1
            logger.error(f"Unexpected cycle failure: {exc} context={context}", exc_info=True)
        else:
            report = CycleReport(
                ok=True,
                started_at=started,
                finished_at=time.time(),
                context=context,
                messages=len(messages),
                tx_hash=result.tx_hash,
            )
            self.cycles_ok += 1
            log_event(logger, "CYCLE_OK", msgs=len(messages), tx_hash=result.tx_hash)
        finally:
            self.state = ControllerState.IDLE

        self.last_report = report
        return report

    async def run(self, triggers: "asyncio.Queue[TradeTrigger]") -> None:
        """Consume triggers forever, one cycle at a time."""
        while True:
            trigger = await triggers.get()
            try:
                logger.debug(f"trigger received_at={trigger.received_at} pending={triggers.qsize()}")
                await self.run_cycle()
            finally:
                triggers.task_done()

    def snapshot(self) -> Dict[str, Any]:
        last = self.last_report
        return {
            "state": self.state.value,
            "cycles_ok": self.cycles_ok,
            "cycles_failed": self.cycles_failed,
            "last_cycle": None
            if last is None
            else {
                "ok": last.ok,
                "started_at": last.started_at,
                "finished_at": last.finished_at,
                "messages": last.messages,
                "tx_hash": last.tx_hash,
                "error": last.error,
                "context": last.context,
            },
        }
