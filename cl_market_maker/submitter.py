"""
Transaction submission.

`KeyringSubmitter` signs with a key from the local Cosmos keyring and
broadcasts, both through the chain CLI. `SignerServiceSubmitter` hands the
ordered message list to an HTTP signing service instead (request and
response shapes in `build_payload` and `submit`). `DryRunSubmitter` only
logs what would have been sent.
"""

from __future__ import annotations

import asyncio
import hashlib
import json as jsonlib
import math
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from cl_market_maker.errors import SubmissionError
from cl_market_maker.log import get_logger, log_event
from cl_market_maker.models import Coin, OutboundMessage, TxResult

logger = get_logger("cl_market_maker.submitter", "SUBMIT")

BROADCAST_PATH = "/broadcast"


class Submitter(Protocol):
    async def submit(self, owner: str, messages: Sequence[OutboundMessage]) -> TxResult:
        ...


def encode_messages(messages: Sequence[OutboundMessage]) -> list[Dict[str, Any]]:
    return [m.to_json() for m in messages]


class DryRunSubmitter:
    async def submit(self, owner: str, messages: Sequence[OutboundMessage]) -> TxResult:
        payload = encode_messages(messages)
        digest = hashlib.sha256(jsonlib.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest().upper()
        for msg in payload:
            logger.info(f"[DRY_RUN] {jsonlib.dumps(msg, sort_keys=True)}")
        log_event(logger, "TX_DRY_RUN", owner=owner, msgs=len(payload), tx_hash=digest)
        return TxResult(tx_hash=digest)


class SignerServiceSubmitter:
    def __init__(
        self,
        signer_url: str,
        *,
        memo: str = "",
        fees: str = "",
        gas: str = "auto",
        gas_adjustment: float = 1.5,
        timeout: float = 30.0,
    ) -> None:
        self.signer_url = signer_url.rstrip("/")
        self.memo = memo
        self.fees = fees
        self.gas = gas
        self.gas_adjustment = gas_adjustment
        self.timeout = timeout

    def build_payload(self, owner: str, messages: Sequence[OutboundMessage]) -> Dict[str, Any]:
        return {
            "signer": owner,
            "messages": encode_messages(messages),
            "memo": self.memo,
            "fees": self.fees,
            "gas": self.gas,
            "gas_adjustment": self.gas_adjustment,
        }

    async def submit(self, owner: str, messages: Sequence[OutboundMessage]) -> TxResult:
        payload = self.build_payload(owner, messages)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.signer_url}{BROADCAST_PATH}", json=payload)
        except httpx.TimeoutException:
            raise SubmissionError(f"timed out after {self.timeout}s") from None
        except httpx.RequestError as e:
            raise SubmissionError(str(e) or type(e).__name__) from None

        try:
            body: Optional[Any] = resp.json()
        except ValueError:
            body = None

        if not (200 <= resp.status_code < 300) or not isinstance(body, dict):
            detail = body.get("error") if isinstance(body, dict) else resp.text
            raise SubmissionError(str(detail), resp.status_code)

        code = int(body.get("code") or 0)
        tx_hash = str(body.get("txhash") or "")
        if code != 0:
            raise SubmissionError(f"tx {tx_hash} rejected with code={code}: {body.get('raw_log', '')}", resp.status_code)

        log_event(logger, "TX_SUBMITTED", owner=owner, msgs=len(messages), tx_hash=tx_hash)
        return TxResult(tx_hash=tx_hash, raw=body)


SIGN_GAS_LIMIT = 2_000_000
SIMULATE_PATH = "/cosmos/tx/v1beta1/simulate"
_COIN_RE = re.compile(r"^(\d+)([a-zA-Z][a-zA-Z0-9/:._-]*)$")


def parse_coins(raw: str) -> List[Coin]:
    """Parse a CLI-style coin list such as "5000uosmo,10uion"."""
    coins: List[Coin] = []
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        match = _COIN_RE.match(part)
        if match is None:
            raise ValueError(f"invalid coin: {part!r}")
        coins.append(Coin(denom=match.group(2), amount=int(match.group(1))))
    return coins


class KeyringSubmitter:
    """
    Signs with a key held in the local Cosmos keyring and broadcasts through
    the chain's own CLI (`osmosisd` by default). With `gas="auto"` the
    transaction is signed once, simulated on the LCD and signed again with
    gas_used * gas_adjustment as its limit.
    """

    def __init__(
        self,
        *,
        key_name: str,
        chain_id: str,
        node: str,
        lcd_url: str,
        binary: str = "osmosisd",
        keyring_backend: str = "test",
        keyring_dir: str = "",
        memo: str = "",
        fees: str = "",
        gas: str = "auto",
        gas_adjustment: float = 1.5,
        timeout: float = 30.0,
    ) -> None:
        self.key_name = key_name
        self.chain_id = chain_id
        self.node = node
        self.lcd_url = lcd_url.rstrip("/")
        self.binary = binary
        self.keyring_backend = keyring_backend
        self.keyring_dir = keyring_dir
        self.memo = memo
        self.fees = parse_coins(fees)
        self.gas = gas
        self.gas_adjustment = gas_adjustment
        self.timeout = timeout
        self._key_address: Optional[str] = None

    def _keyring_flags(self) -> List[str]:
        flags = ["--keyring-backend", self.keyring_backend]
        if self.keyring_dir:
            flags += ["--keyring-dir", self.keyring_dir]
        return flags

    def build_unsigned_tx(self, messages: Sequence[OutboundMessage], gas_limit: int) -> Dict[str, Any]:
        return {
            "body": {
                "messages": encode_messages(messages),
                "memo": self.memo,
                "timeout_height": "0",
                "extension_options": [],
                "non_critical_extension_options": [],
            },
            "auth_info": {
                "signer_infos": [],
                "fee": {
                    "amount": [c.to_json() for c in self.fees],
                    "gas_limit": str(gas_limit),
                    "payer": "",
                    "granter": "",
                },
            },
            "signatures": [],
        }

    async def _run(self, *args: str) -> str:
        cmd = [self.binary, *args]
        logger.debug(f"exec {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise SubmissionError(f"{self.binary} not found") from None

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise SubmissionError(f"{args[0]} {args[1]} timed out after {self.timeout}s") from None
        except asyncio.CancelledError:
            proc.kill()
            raise

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", "replace").strip() or f"exit {proc.returncode}"
            raise SubmissionError(f"{args[0]} {args[1]} failed: {detail}")
        return stdout.decode("utf-8", "replace").strip()

    async def key_address(self) -> str:
        if self._key_address is None:
            self._key_address = await self._run("keys", "show", self.key_name, "-a", *self._keyring_flags())
        return self._key_address

    async def _sign(self, unsigned: Dict[str, Any], workdir: Path, name: str) -> Path:
        unsigned_path = workdir / f"{name}.unsigned.json"
        signed_path = workdir / f"{name}.signed.json"
        unsigned_path.write_text(jsonlib.dumps(unsigned), encoding="utf-8")
        await self._run(
            "tx",
            "sign",
            str(unsigned_path),
            "--from",
            self.key_name,
            "--chain-id",
            self.chain_id,
            "--node",
            self.node,
            "--output-document",
            str(signed_path),
            *self._keyring_flags(),
        )
        return signed_path

    async def _simulate(self, signed_path: Path) -> int:
        tx_bytes = await self._run("tx", "encode", str(signed_path))
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.lcd_url}{SIMULATE_PATH}", json={"tx_bytes": tx_bytes})
        except httpx.RequestError as e:
            raise SubmissionError(f"simulate: {str(e) or type(e).__name__}") from None

        try:
            body: Optional[Any] = resp.json()
        except ValueError:
            body = None
        if not (200 <= resp.status_code < 300) or not isinstance(body, dict):
            detail = body.get("message") if isinstance(body, dict) else resp.text
            raise SubmissionError(f"simulate: {detail}", resp.status_code)

        try:
            gas_used = int((body.get("gas_info") or {})["gas_used"])
        except (KeyError, TypeError, ValueError):
            raise SubmissionError(f"simulate: no gas_used in {body}", resp.status_code) from None
        return math.ceil(gas_used * self.gas_adjustment)

    async def submit(self, owner: str, messages: Sequence[OutboundMessage]) -> TxResult:
        address = await self.key_address()
        if address != owner:
            raise SubmissionError(f"key {self.key_name} is {address}, not the position owner {owner}")

        with tempfile.TemporaryDirectory(prefix="clmm-tx-") as tmp:
            workdir = Path(tmp)
            if self.gas == "auto":
                draft = await self._sign(self.build_unsigned_tx(messages, SIGN_GAS_LIMIT), workdir, "simulate")
                gas_limit = await self._simulate(draft)
                log_event(logger, "TX_GAS_ESTIMATED", gas_limit=gas_limit)
            else:
                gas_limit = int(self.gas)
            signed = await self._sign(self.build_unsigned_tx(messages, gas_limit), workdir, "tx")
            out = await self._run(
                "tx",
                "broadcast",
                str(signed),
                "--node",
                self.node,
                "--broadcast-mode",
                "sync",
                "--output",
                "json",
            )

        try:
            body = jsonlib.loads(out)
        except ValueError:
            raise SubmissionError(f"unreadable broadcast output: {out[:200]}") from None
        if not isinstance(body, dict):
            raise SubmissionError(f"unreadable broadcast output: {out[:200]}")

        code = int(body.get("code") or 0)
        tx_hash = str(body.get("txhash") or "")
        if code != 0:
            raise SubmissionError(f"tx {tx_hash} rejected with code={code}: {body.get('raw_log', '')}")

        log_event(logger, "TX_SUBMITTED", owner=owner, msgs=len(messages), tx_hash=tx_hash, gas=gas_limit)
        return TxResult(tx_hash=tx_hash, raw=body)
