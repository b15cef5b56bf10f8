import base64
import json
from decimal import Decimal

import httpx
import pytest

from cl_market_maker.chain_client import ChainClient
from cl_market_maker.derivative import DerivativeReader
from cl_market_maker.errors import QueryError
from cl_market_maker.models import Coin, DerivativeConfig, PoolRef

LCD = "https://lcd.example.com"


class _FakeResponse:
    def __init__(self, status_code=200, json_data=None, text_data=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text_data or ''

    def json(self):
        if isinstance(self._json, Exception):
            raise self._json
        return self._json


class _FakeClient:
    def __init__(self, routes=None, raise_request: Exception = None, calls=None):
        self._routes = routes or {}
        self._raise = raise_request
        self.calls = calls if calls is not None else []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def request(self, method, url, params=None, json=None, headers=None):
        self.calls.append((method, url, params))
        if self._raise:
            raise self._raise
        path = url[len(LCD):]
        if path in self._routes:
            return self._routes[path]
        return _FakeResponse(status_code=404, json_data={'message': f'no route {path}'})


def _patch_async_client(monkeypatch, routes=None, raise_request: Exception = None):
    calls = []

    def _fake_client(*, timeout=None):
        return _FakeClient(routes=routes, raise_request=raise_request, calls=calls)

    monkeypatch.setattr(httpx, 'AsyncClient', _fake_client)
    return calls


def _smart_path(contract, query):
    encoded = base64.b64encode(json.dumps(query).encode('utf-8')).decode('utf-8')
    return f'/cosmwasm/wasm/v1/contract/{contract}/smart/{encoded}'


CONFIG_JSON = {
    'power_pool': {'id': 1066, 'base_denom': 'upower', 'quote_denom': 'uosmo'},
    'base_pool': {'id': 1, 'base_denom': 'uosmo', 'quote_denom': 'uusdc'},
    'index_scale': 1,
    'fee_rate': '0.001',
    'min_collateral_amount': '100',
    'version': '0.3.0',
}

STATE_JSON = {
    'normalisation_factor': '0.97',
    'is_open': True,
    'is_paused': False,
}


@pytest.mark.asyncio
async def test_spot_price_passes_denoms(monkeypatch):
    calls = _patch_async_client(monkeypatch, routes={
        '/osmosis/poolmanager/v1beta1/pools/1/prices': _FakeResponse(json_data={'spot_price': '1.250000000000000000'}),
    })
    client = ChainClient(LCD + '/')

    price = await client.spot_price(PoolRef(1, 'uosmo', 'uusdc'))

    assert price == '1.250000000000000000'
    method, url, params = calls[0]
    assert method == 'GET'
    assert url == LCD + '/osmosis/poolmanager/v1beta1/pools/1/prices'
    assert params == {'base_asset_denom': 'uosmo', 'quote_asset_denom': 'uusdc'}


@pytest.mark.asyncio
async def test_spot_price_http_error_is_query_error(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/poolmanager/v1beta1/pools/9/prices': _FakeResponse(status_code=400, json_data={'message': 'pool not found'}),
    })
    client = ChainClient(LCD)

    with pytest.raises(QueryError) as exc_info:
        await client.spot_price(PoolRef(9, 'a', 'b'))
    assert exc_info.value.status == 400
    assert 'pool not found' in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_error_is_query_error(monkeypatch):
    _patch_async_client(monkeypatch, raise_request=httpx.ConnectError('boom'))
    client = ChainClient(LCD)

    with pytest.raises(QueryError) as exc_info:
        await client.current_tick(1066)
    assert exc_info.value.status is None
    assert 'boom' in str(exc_info.value)


@pytest.mark.asyncio
async def test_non_json_body_is_query_error(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/poolmanager/v1beta1/pools/1066': _FakeResponse(json_data=ValueError('no json'), text_data='<html>'),
    })
    client = ChainClient(LCD)

    with pytest.raises(QueryError):
        await client.current_tick(1066)


@pytest.mark.asyncio
async def test_current_tick(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/poolmanager/v1beta1/pools/1066': _FakeResponse(json_data={'pool': {'current_tick': '-1234500'}}),
    })
    assert await ChainClient(LCD).current_tick(1066) == -1_234_500


@pytest.mark.asyncio
async def test_current_tick_rejects_non_cl_pool(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/poolmanager/v1beta1/pools/1': _FakeResponse(json_data={'pool': {'pool_assets': []}}),
    })
    with pytest.raises(QueryError):
        await ChainClient(LCD).current_tick(1)


@pytest.mark.asyncio
async def test_open_positions_decodes_breakdown(monkeypatch):
    body = {
        'positions': [
            {
                'position': {
                    'position_id': '41',
                    'address': 'osmo1owner',
                    'pool_id': '1066',
                    'lower_tick': '-1000000',
                    'upper_tick': '0',
                    'liquidity': '12345.678900000000000000',
                },
                'asset0': {'denom': 'upower', 'amount': '0'},
                'asset1': {'denom': 'uosmo', 'amount': '777'},
            },
        ],
    }
    calls = _patch_async_client(monkeypatch, routes={
        '/osmosis/concentratedliquidity/v1beta1/positions/osmo1owner': _FakeResponse(json_data=body),
    })

    positions = await ChainClient(LCD).open_positions(1066, 'osmo1owner')

    assert calls[0][2] == {'pool_id': 1066}
    assert len(positions) == 1
    p = positions[0]
    assert p.position_id == 41
    assert p.liquidity == Decimal('12345.6789')
    assert p.asset1 == Coin('uosmo', 777)
    assert (p.lower_tick, p.upper_tick) == (-1_000_000, 0)


@pytest.mark.asyncio
async def test_open_positions_empty(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/concentratedliquidity/v1beta1/positions/osmo1owner': _FakeResponse(json_data={'positions': []}),
    })
    assert await ChainClient(LCD).open_positions(1066, 'osmo1owner') == []


@pytest.mark.asyncio
async def test_open_positions_malformed(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/concentratedliquidity/v1beta1/positions/osmo1owner': _FakeResponse(json_data={'positions': [{'position': {}}]}),
    })
    with pytest.raises(QueryError):
        await ChainClient(LCD).open_positions(1066, 'osmo1owner')


@pytest.mark.asyncio
async def test_smart_query_encodes_message(monkeypatch):
    contract = 'osmo1contract'
    calls = _patch_async_client(monkeypatch, routes={
        _smart_path(contract, {'state': {}}): _FakeResponse(json_data={'data': STATE_JSON}),
    })

    data = await ChainClient(LCD).smart_query(contract, {'state': {}})

    assert data == STATE_JSON
    assert calls[0][1] == LCD + _smart_path(contract, {'state': {}})


@pytest.mark.asyncio
async def test_derivative_reader_config_and_state(monkeypatch):
    contract = 'osmo1contract'
    _patch_async_client(monkeypatch, routes={
        _smart_path(contract, {'config': {}}): _FakeResponse(json_data={'data': CONFIG_JSON}),
        _smart_path(contract, {'state': {}}): _FakeResponse(json_data={'data': STATE_JSON}),
    })
    reader = DerivativeReader(ChainClient(LCD), contract)

    config, state = await reader.get_config_and_state(timeout=1.0)

    assert config.power_pool == PoolRef(1066, 'upower', 'uosmo')
    assert config.base_pool.pool_id == 1
    assert config.index_scale == 1
    assert config.min_collateral == '100'
    assert state.normalization_factor == '0.97'
    assert state.is_open is True


@pytest.mark.asyncio
async def test_derivative_reader_surfaces_first_failure(monkeypatch):
    contract = 'osmo1contract'
    _patch_async_client(monkeypatch, routes={
        _smart_path(contract, {'state': {}}): _FakeResponse(json_data={'data': STATE_JSON}),
    })
    reader = DerivativeReader(ChainClient(LCD), contract)

    with pytest.raises(QueryError) as exc_info:
        await reader.get_config_and_state()
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_spot_prices_for_both_pools(monkeypatch):
    _patch_async_client(monkeypatch, routes={
        '/osmosis/poolmanager/v1beta1/pools/1066/prices': _FakeResponse(json_data={'spot_price': '0.25'}),
        '/osmosis/poolmanager/v1beta1/pools/1/prices': _FakeResponse(json_data={'spot_price': '1.0'}),
    })
    config = DerivativeConfig.from_json(CONFIG_JSON)
    prices = await ChainClient(LCD).spot_prices(config)

    assert prices.base_spot_price == '1.0'
    assert prices.power_spot_price == '0.25'
