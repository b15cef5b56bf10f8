"""Reads the power perpetual contract's config and state."""

from __future__ import annotations

from typing import Optional, Tuple

from cl_market_maker.chain_client import ChainClient
from cl_market_maker.errors import QueryError
from cl_market_maker.fanout import join2
from cl_market_maker.models import DerivativeConfig, DerivativeState


class DerivativeReader:
    def __init__(self, client: ChainClient, contract_address: str) -> None:
        self.client = client
        self.contract_address = contract_address

    async def get_config(self) -> DerivativeConfig:
        data = await self.client.smart_query(self.contract_address, {"config": {}})
        try:
            return DerivativeConfig.from_json(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise QueryError("derivative_config", f"malformed config: {exc}") from None

    async def get_state(self) -> DerivativeState:
        data = await self.client.smart_query(self.contract_address, {"state": {}})
        return DerivativeState.from_json(data)

    async def get_config_and_state(self, timeout: Optional[float] = None) -> Tuple[DerivativeConfig, DerivativeState]:
        return await join2(
            self.get_config(),
            self.get_state(),
            timeout=timeout,
            names=("derivative_config", "derivative_state"),
        )
