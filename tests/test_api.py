"""Tests for the HTTP API using FastAPI's TestClient."""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from api import create_app
from catalogs import ProductCatalog, parse_catalog
from identity import Identity
from market import CostEstimate
from rpc import NodeConnectionError
from session import Session, StateStore

from conftest import MARKET, SELLER_ADDRESS, SELLER_KEY, make_order

SETTINGS = {
    'refresh_interval_minutes': 30,
    'error_expiry_seconds': 20,
}

CSV = ('Compound,Quantity,Price,Supplier,COA,Shipping,Total,Unit,Ship time,Description,CAS,Formula,MW\n'
       'Caffeine,10g,8,Acme,,2,100,g,3,,58-08-2,C8H10N4O2,194.19\n')

@pytest.fixture
def session(tmp_path):
    market = Mock(address=MARKET)
    market.is_approved_seller = AsyncMock(return_value=True)
    session = Session(SETTINGS, Mock(), market, StateStore(str(tmp_path / 'state.json')))
    session.assembler = Mock()
    session.assembler.assemble = AsyncMock(return_value=[])
    session.loader = Mock()
    session.loader.load = AsyncMock(return_value=[])
    return session

@pytest.fixture
def client(session):
    with TestClient(create_app(session=session, auto_refresh=False)) as client:
        yield client

def sign_in(session):
    session.identity = Identity.from_private_key(SELLER_KEY)

def test_status_without_identity(client):
    response = client.get('/system/status')
    assert response.status_code == 200
    body = response.json()
    assert body['address'] is None
    assert body['stale'] is True
    assert body['market_contract_address'] == MARKET

def test_set_identity(client, session):
    response = client.post('/system/identity', json={'private_key': SELLER_KEY})
    assert response.status_code == 200
    assert response.json()['address'] == SELLER_ADDRESS
    assert session.identity.address == SELLER_ADDRESS

def test_set_invalid_identity(client):
    response = client.post('/system/identity', json={'private_key': 'nope'})
    assert response.status_code == 400
    assert response.json()['detail'] == 'Invalid private key'

def test_clear_identity(client, session):
    sign_in(session)
    response = client.delete('/system/identity')
    assert response.status_code == 204
    assert session.identity is None

def test_refresh_failure_is_bad_gateway(client, session):
    sign_in(session)
    session.loader.load.side_effect = NodeConnectionError('Failed to connect to node')

    response = client.post('/system/refresh')

    assert response.status_code == 502
    assert client.get('/system/errors').json() == ['Refresh failed: Failed to connect to node']

def test_refresh_without_identity(client):
    response = client.post('/system/refresh')
    assert response.status_code == 200
    assert response.json()['refreshed'] is False

def test_orders_with_price_checks(client, session):
    session.catalogs = [ProductCatalog(products=parse_catalog(CSV), timestamp=100)]
    session.orders = [
        make_order(150, usdt_raw=10_000_000),
        make_order(160, trx_hash='0x' + 'bb' * 32, reply_trx_hash='0x' + 'cc' * 32)
    ]

    body = client.get('/orders').json()

    assert len(body['unfulfilled']) == 1
    assert len(body['fulfilled']) == 1
    check = body['unfulfilled'][0]['price_check']
    assert check['status'] == 'exact'
    assert body['unfulfilled'][0]['payment_amounts']['USDT'] == '10.000000'
    assert body['fulfilled'][0]['fulfilled'] is True

    only_fulfilled = client.get('/orders', params={'fulfilled': 'true'}).json()
    assert list(only_fulfilled) == ['fulfilled']

def test_get_order(client, session):
    session.orders = [make_order(150)]

    assert client.get('/orders/' + '0x' + 'AA' * 32).status_code == 200
    assert client.get('/orders/0x' + '00' * 32).status_code == 404

def test_fulfill_requires_identity(client, session):
    session.orders = [make_order(150)]
    response = client.post(f"/orders/{'0x' + 'aa' * 32}/fulfill", json={'message': 'Shipped'})
    assert response.status_code == 409

def test_fulfill_order_without_buyer_key(client, session):
    sign_in(session)
    session.orders = [make_order(150)]
    response = client.post(f"/orders/{'0x' + 'aa' * 32}/fulfill/estimate", json={})
    assert response.status_code == 400

def test_upload_estimate_rejects_bad_csv(client, session):
    sign_in(session)
    response = client.post('/catalogs/upload/estimate', json={'csv': 'only,a,header'})
    assert response.status_code == 400
    assert 'at least a header' in response.json()['detail']

def test_upload_estimate(client, session):
    sign_in(session)
    session.publisher.estimate_upload_cost = AsyncMock(
        return_value=CostEstimate(gas=100_000, gas_price=20_000_000_000, cost_wei=2 * 10 ** 15)
    )

    response = client.post('/catalogs/upload/estimate', json={'csv': CSV})

    assert response.status_code == 200
    body = response.json()
    assert body['gas'] == 100_000
    assert body['cost_eth'] == '0.002'
    assert body['size'] > 0

def test_list_catalogs(client, session):
    session.catalogs = [ProductCatalog(products=parse_catalog(CSV), timestamp=100, link='0x01')]
    body = client.get('/catalogs').json()
    assert body[0]['timestamp'] == 100
    assert body[0]['products'][0]['compound_name'] == 'Caffeine'
    assert body[0]['products'][0]['price'] == '8'

def test_uploads_require_identity(client):
    assert client.get('/catalogs/uploads').status_code == 409

def preflight(client, origin):
    return client.options('/catalogs/upload', headers={
        'Origin': origin,
        'Access-Control-Request-Method': 'POST'
    })

def test_foreign_origin_is_not_allowed(client):
    response = preflight(client, 'https://evil.example')
    assert 'access-control-allow-origin' not in response.headers

def test_configured_origin_is_allowed(session):
    app = create_app(session=session, auto_refresh=False, cors_origins=['http://localhost:3000'])
    with TestClient(app) as client:
        allowed = preflight(client, 'http://localhost:3000')
        denied = preflight(client, 'https://evil.example')

    assert allowed.headers['access-control-allow-origin'] == 'http://localhost:3000'
    assert 'access-control-allow-origin' not in denied.headers
