# cl_market_maker/ws_client.py
import asyncio
import logging
import json
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

from cl_market_maker.errors import SubscriptionError
from cl_market_maker.log import get_logger, log_event
from cl_market_maker.models import TradeTrigger

logger = get_logger("cl_market_maker.ws_client", "WS")

SUBSCRIBE_ID = 1

# Lightweight connection state for health checks
WS_STATE: Dict[str, Any] = {
    "connected": False,
    "last_connect_ts": None,
    "last_message_ts": None,
    "last_error": None,
    "reconnects": 0,
}


def build_subscribe_request(query: str, request_id: int = SUBSCRIBE_ID) -> str:
    return json.dumps(
        {
            "jsonrpc": "2.0",
            "method": "subscribe",
            "id": request_id,
            "params": {"query": query},
        }
    )


def parse_event_message(raw: str) -> Optional[TradeTrigger]:
    """
    Turn one JSON-RPC frame into a trigger. The subscribe ack (empty
    result) yields None; an error frame raises SubscriptionError. Frames that
    are not JSON-RPC objects raise ValueError.
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON-RPC object, got {type(data).__name__}")
    if data.get("error"):
        raise SubscriptionError(f"subscription error: {data['error']}")

    result = data.get("result") or {}
    if not isinstance(result, dict):
        raise ValueError(f"expected an object result, got {type(result).__name__}")
    if not result.get("data"):
        return None
    return TradeTrigger(received_at=time.time(), raw=result)


async def _connect_once(
    url: str,
    query: str,
    triggers: "asyncio.Queue[TradeTrigger]",
    on_subscribed: Optional[Callable[[], None]] = None,
) -> None:
    log_event(logger, "WS_CONNECTING", url=url)
    WS_STATE["connected"] = False
    WS_STATE["last_error"] = None

    async with websockets.connect(url) as websocket:
        WS_STATE["connected"] = True
        WS_STATE["last_connect_ts"] = datetime.now(timezone.utc).isoformat()
        log_event(logger, "WS_CONNECTED")

        await websocket.send(build_subscribe_request(query))
        log_event(logger, "WS_SUBSCRIBE_SENT", query=repr(query))

        async for message in websocket:
            WS_STATE["last_message_ts"] = datetime.now(timezone.utc).isoformat()
            try:
                trigger = parse_event_message(message)
            except ValueError as exc:
                logger.error(f"Failed to decode WS message: {exc}")
                continue
            if trigger is None:
                log_event(logger, "WS_SUBSCRIBED")
                if on_subscribed is not None:
                    on_subscribed()
                continue
            triggers.put_nowait(trigger)
            log_event(logger, "WS_TRIGGER_QUEUED", depth=triggers.qsize(), level=logging.DEBUG)


async def connect_and_listen(
    url: str,
    query: str,
    triggers: "asyncio.Queue[TradeTrigger]",
    max_reconnects: int = 10,
) -> None:
    """
    Persistent WS loop with exponential backoff + jitter on reconnect.
    Gives up with SubscriptionError after `max_reconnects` consecutive
    failed connections. A session whose subscription was acknowledged
    resets the count, however it ended.
    """
    backoff = 1.0
    max_backoff = 60.0
    failures = 0

    def _subscribed() -> None:
        nonlocal backoff, failures
        failures = 0
        backoff = 1.0

    while True:
        try:
            await _connect_once(url, query, triggers, on_subscribed=_subscribed)
        except SubscriptionError as exc:
            WS_STATE["last_error"] = str(exc)
            failures += 1
            logger.error(str(exc))
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            WS_STATE["last_error"] = str(exc)
            failures += 1
            logger.error(f"WebSocket connection error: {exc}", exc_info=True)
            log_event(logger, "WS_RECONNECTING_AFTER_ERROR", error=str(exc))
        finally:
            WS_STATE["connected"] = False

        if failures > max_reconnects:
            raise SubscriptionError(f"gave up after {failures} consecutive connection failures: {WS_STATE['last_error']}")

        WS_STATE["reconnects"] += 1
        sleep_for = backoff + random.uniform(0, backoff / 2)
        log_event(logger, "WS_RECONNECT_DELAY", sleep_for=f"{sleep_for:.1f}", backoff=f"{backoff:.1f}")
        await asyncio.sleep(sleep_for)
        backoff = min(backoff * 2, max_backoff)
