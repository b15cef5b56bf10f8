# cl_market_maker/models.py

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

WITHDRAW_POSITION_TYPE = "/osmosis.concentratedliquidity.v1beta1.MsgWithdrawPosition"
CREATE_POSITION_TYPE = "/osmosis.concentratedliquidity.v1beta1.MsgCreatePosition"


@dataclass(frozen=True)
class PoolRef:
    """
    A venue pool used for spot-price queries.
    """
    pool_id: int
    base_denom: str
    quote_denom: str

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PoolRef":
        return cls(
            pool_id=int(data["id"]),
            base_denom=str(data["base_denom"]),
            quote_denom=str(data["quote_denom"]),
        )


@dataclass(frozen=True)
class DerivativeConfig:
    """
    Configuration of the power perpetual contract, fetched every cycle.
    """
    power_pool: PoolRef
    base_pool: PoolRef
    index_scale: int
    fee_rate: str = "0"
    min_collateral: str = "0"
    version: str = ""

    # informational fields from the contract's config query
    funding_period: int = 0
    base_decimals: int = 6
    power_decimals: int = 6

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DerivativeConfig":
        return cls(
            power_pool=PoolRef.from_json(data["power_pool"]),
            base_pool=PoolRef.from_json(data["base_pool"]),
            index_scale=int(data["index_scale"]),
            fee_rate=str(data.get("fee_rate", "0")),
            min_collateral=str(data.get("min_collateral_amount", "0")),
            version=str(data.get("version", "")),
            funding_period=int(data.get("funding_period", 0)),
            base_decimals=int(data.get("base_decimals", 6)),
            power_decimals=int(data.get("power_decimals", 6)),
        )


@dataclass(frozen=True)
class DerivativeState:
    normalization_factor: str
    is_open: bool = False
    is_paused: bool = False
    last_funding_update: Optional[str] = None
    last_pause: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DerivativeState":
        # the contract spells it "normalisation"
        return cls(
            normalization_factor=str(data.get("normalisation_factor") or ""),
            is_open=bool(data.get("is_open", False)),
            is_paused=bool(data.get("is_paused", False)),
            last_funding_update=data.get("last_funding_update"),
            last_pause=data.get("last_pause"),
        )


@dataclass(frozen=True)
class PriceSet:
    base_spot_price: str
    power_spot_price: str


@dataclass(frozen=True)
class QuoteBasis:
    mark_price: float
    index_price: float
    target_price: float
    premium: float


@dataclass(frozen=True)
class TickRange:
    """
    One side of the quote. `tick_at_price` is the spacing-rounded tick of the
    side's reference price before any current-tick adjustment.
    """
    lower_tick: int
    tick_at_price: int
    upper_tick: int


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: int

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Coin":
        return cls(denom=str(data["denom"]), amount=int(data["amount"]))

    def to_json(self) -> Dict[str, str]:
        return {"denom": self.denom, "amount": str(self.amount)}


@dataclass(frozen=True)
class Position:
    """
    An open concentrated-liquidity position owned by the agent.
    """
    position_id: int
    owner: str
    liquidity: Decimal
    asset0: Coin
    asset1: Coin
    lower_tick: int = 0
    upper_tick: int = 0

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Position":
        # LCD returns FullPositionBreakdown: {"position": {...}, "asset0": ..., "asset1": ...}
        inner = data.get("position") or {}
        return cls(
            position_id=int(inner["position_id"]),
            owner=str(inner["address"]),
            liquidity=Decimal(str(inner["liquidity"])),
            asset0=Coin.from_json(data["asset0"]),
            asset1=Coin.from_json(data["asset1"]),
            lower_tick=int(inner.get("lower_tick", 0)),
            upper_tick=int(inner.get("upper_tick", 0)),
        )


@dataclass(frozen=True)
class WithdrawPosition:
    position_id: int
    owner: str
    liquidity: Decimal

    def to_json(self) -> Dict[str, Any]:
        return {
            "@type": WITHDRAW_POSITION_TYPE,
            "position_id": str(self.position_id),
            "sender": self.owner,
            "liquidity_amount": str(self.liquidity),
        }


@dataclass(frozen=True)
class CreatePosition:
    pool_id: int
    lower_tick: int
    upper_tick: int
    tokens_provided: List[Coin]
    sender: str
    min_amount0: int = 0
    min_amount1: int = 0

    def to_json(self) -> Dict[str, Any]:
        return {
            "@type": CREATE_POSITION_TYPE,
            "pool_id": str(self.pool_id),
            "sender": self.sender,
            "lower_tick": str(self.lower_tick),
            "upper_tick": str(self.upper_tick),
            "tokens_provided": [c.to_json() for c in self.tokens_provided],
            "token_min_amount0": str(self.min_amount0),
            "token_min_amount1": str(self.min_amount1),
        }


OutboundMessage = Union[WithdrawPosition, CreatePosition]


@dataclass(frozen=True)
class TxResult:
    tx_hash: str
    raw: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class TradeTrigger:
    """
    One inbound swap notification. The payload is kept for debugging only;
    a cycle never reads it.
    """
    received_at: float
    raw: Optional[Dict[str, Any]] = field(default=None, repr=False)
