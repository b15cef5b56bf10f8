"""
module: cl_market_maker.chain_client

Async helpers for the chain's LCD (REST) endpoint: spot prices, the quoted
pool's current tick, the agent's open positions and CosmWasm smart queries.
Every failed call surfaces as QueryError.
"""

from __future__ import annotations

import base64
import json as jsonlib
from typing import Any, Dict, List, Optional

import httpx

from cl_market_maker.errors import QueryError
from cl_market_maker.fanout import join2
from cl_market_maker.log import get_logger
from cl_market_maker.models import DerivativeConfig, PoolRef, Position, PriceSet

logger = get_logger("cl_market_maker.chain_client", "CHAIN")

# --- LCD routes ---
SPOT_PRICE = lambda pool_id: f"/osmosis/poolmanager/v1beta1/pools/{pool_id}/prices"
POOL = lambda pool_id: f"/osmosis/poolmanager/v1beta1/pools/{pool_id}"
USER_POSITIONS = lambda address: f"/osmosis/concentratedliquidity/v1beta1/positions/{address}"
SMART_QUERY = lambda contract, query_b64: f"/cosmwasm/wasm/v1/contract/{contract}/smart/{query_b64}"

DEFAULT_TIMEOUT = 10


class ChainClient:
    def __init__(self, lcd_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.lcd_url = lcd_url.rstrip("/")
        self.timeout = timeout

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.lcd_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(method, url, params=params, headers={"Accept": "application/json"})
            status = resp.status_code
            try:
                body = resp.json()
            except ValueError:
                body = resp.text

            if 200 <= status < 300:
                return {"ok": True, "status": status, "data": body}

            err_msg = body.get("message") or body.get("error") if isinstance(body, dict) else body
            return {"ok": False, "status": status, "error": err_msg}
        except httpx.RequestError as e:
            return {"ok": False, "status": None, "error": str(e) or type(e).__name__}

    async def _get(self, operation: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = await self._request("GET", path, params=params)
        if not resp.get("ok"):
            raise QueryError(operation, str(resp.get("error")), resp.get("status"))

        data = resp.get("data")
        if not isinstance(data, dict):
            raise QueryError(operation, f"unexpected response type: {type(data).__name__}", resp.get("status"))
        return data

    # --- gateway ---

    async def spot_price(self, pool: PoolRef) -> str:
        logger.debug(
            f"Requesting spot price for pool {pool.pool_id} "
            f"base={pool.base_denom} quote={pool.quote_denom}"
        )
        data = await self._get(
            "spot_price",
            SPOT_PRICE(pool.pool_id),
            params={"base_asset_denom": pool.base_denom, "quote_asset_denom": pool.quote_denom},
        )
        price = data.get("spot_price")
        if not price:
            raise QueryError("spot_price", f"no spot_price for pool {pool.pool_id}: {data}")
        return str(price)

    async def current_tick(self, pool_id: int) -> int:
        data = await self._get("current_tick", POOL(pool_id))
        pool = data.get("pool") or {}
        try:
            return int(pool["current_tick"])
        except (KeyError, TypeError, ValueError):
            raise QueryError("current_tick", f"pool {pool_id} is not a concentrated-liquidity pool") from None

    async def open_positions(self, pool_id: int, owner: str) -> List[Position]:
        data = await self._get("open_positions", USER_POSITIONS(owner), params={"pool_id": pool_id})
        try:
            return [Position.from_json(p) for p in data.get("positions") or []]
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise QueryError("open_positions", f"malformed position: {exc}") from None

    async def smart_query(self, contract: str, query: Dict[str, Any]) -> Dict[str, Any]:
        query_b64 = base64.b64encode(jsonlib.dumps(query).encode("utf-8")).decode("utf-8")
        data = await self._get("smart_query", SMART_QUERY(contract, query_b64))
        out = data.get("data")
        if not isinstance(out, dict):
            raise QueryError("smart_query", f"unexpected contract response: {data}")
        return out

    async def spot_prices(self, config: DerivativeConfig, timeout: Optional[float] = None) -> PriceSet:
        """Base and power spot prices, fetched concurrently."""
        base, power = await join2(
            self.spot_price(config.base_pool),
            self.spot_price(config.power_pool),
            timeout=timeout,
            names=("base_spot_price", "power_spot_price"),
        )
        return PriceSet(base_spot_price=base, power_spot_price=power)
