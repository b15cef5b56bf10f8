import asyncio
import json

import pytest

import cl_market_maker.ws_client as ws
from cl_market_maker.errors import SubscriptionError

QUERY = "token_swapped.module = 'gamm' AND token_swapped.pool_id = '1066'"


def test_build_subscribe_request():
    req = json.loads(ws.build_subscribe_request(QUERY))
    assert req == {
        'jsonrpc': '2.0',
        'method': 'subscribe',
        'id': 1,
        'params': {'query': QUERY},
    }


def test_parse_subscribe_ack():
    assert ws.parse_event_message(json.dumps({'jsonrpc': '2.0', 'id': 1, 'result': {}})) is None


def test_parse_event_frame():
    frame = {
        'jsonrpc': '2.0',
        'id': 1,
        'result': {
            'query': QUERY,
            'data': {'type': 'tendermint/event/Tx', 'value': {}},
            'events': {'token_swapped.pool_id': ['1066']},
        },
    }
    trigger = ws.parse_event_message(json.dumps(frame))
    assert trigger is not None
    assert trigger.raw['events'] == {'token_swapped.pool_id': ['1066']}
    assert trigger.received_at > 0


@pytest.mark.parametrize('raw', ['[]', '"x"', '3', json.dumps({'result': ['data']})])
def test_parse_rejects_frames_that_are_not_objects(raw):
    with pytest.raises(ValueError):
        ws.parse_event_message(raw)


def test_parse_error_frame():
    frame = {'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32603, 'message': 'max subscriptions'}}
    with pytest.raises(SubscriptionError):
        ws.parse_event_message(json.dumps(frame))


class _FakeSocket:
    def __init__(self, frames, drop_with=None):
        self._frames = list(frames)
        self._drop_with = drop_with
        self.sent = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def send(self, message):
        self.sent.append(message)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._frames:
            if self._drop_with is not None:
                raise self._drop_with
            raise StopAsyncIteration
        return self._frames.pop(0)


@pytest.mark.asyncio
async def test_connect_once_queues_one_trigger_per_event(monkeypatch):
    event = json.dumps({'result': {'data': {'type': 'tendermint/event/Tx'}}})
    socket = _FakeSocket([
        json.dumps({'result': {}}),
        'not json',
        '[]',
        event,
        event,
    ])
    monkeypatch.setattr(ws.websockets, 'connect', lambda url: socket)
    triggers = asyncio.Queue()

    await ws._connect_once('wss://rpc.example.com/websocket', QUERY, triggers)

    assert json.loads(socket.sent[0])['params']['query'] == QUERY
    assert triggers.qsize() == 2
    assert ws.WS_STATE['connected'] is True


async def _no_sleep(_seconds):
    return None


@pytest.mark.asyncio
async def test_connect_and_listen_gives_up(monkeypatch):
    attempts = []

    def _refuse(url):
        attempts.append(url)
        raise OSError('connection refused')

    monkeypatch.setattr(ws.websockets, 'connect', _refuse)
    monkeypatch.setattr(ws.asyncio, 'sleep', _no_sleep)

    with pytest.raises(SubscriptionError):
        await ws.connect_and_listen('ws://localhost:26657/websocket', QUERY, asyncio.Queue(), max_reconnects=2)
    assert len(attempts) == 3
    assert ws.WS_STATE['connected'] is False


@pytest.mark.asyncio
async def test_dropped_sessions_do_not_accumulate_towards_the_limit(monkeypatch):
    ack = json.dumps({'result': {}})
    event = json.dumps({'result': {'data': {'type': 'tendermint/event/Tx'}}})
    attempts = []

    def _connect(url):
        attempts.append(url)
        if len(attempts) <= 6:
            return _FakeSocket([ack, event], drop_with=OSError('connection reset by peer'))
        raise OSError('connection refused')

    monkeypatch.setattr(ws.websockets, 'connect', _connect)
    monkeypatch.setattr(ws.asyncio, 'sleep', _no_sleep)
    triggers = asyncio.Queue()

    with pytest.raises(SubscriptionError) as exc_info:
        await ws.connect_and_listen('ws://localhost:26657/websocket', QUERY, triggers, max_reconnects=2)

    # the last drop plus two refused connections make three failures in a row
    assert len(attempts) == 8
    assert triggers.qsize() == 6
    assert 'connection refused' in str(exc_info.value)


@pytest.mark.asyncio
async def test_rejected_subscription_counts_as_failure(monkeypatch):
    rejected = json.dumps({'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32603, 'message': 'max subscriptions'}})
    attempts = []

    def _connect(url):
        attempts.append(url)
        return _FakeSocket([rejected])

    monkeypatch.setattr(ws.websockets, 'connect', _connect)
    monkeypatch.setattr(ws.asyncio, 'sleep', _no_sleep)

    with pytest.raises(SubscriptionError):
        await ws.connect_and_listen('ws://localhost:26657/websocket', QUERY, asyncio.Queue(), max_reconnects=2)
    assert len(attempts) == 3
