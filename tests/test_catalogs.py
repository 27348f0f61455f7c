"""Tests for catalog parsing, loading, price reconciliation and uploads."""

import gzip
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from eth_abi import decode as abi_decode

from catalogs import (
    CatalogLoader, CatalogParseError, CatalogPublisher, EmptyCatalogError, PLACEHOLDER_LINK,
    ProductCatalog, decompress_catalog, find_expected_price, parse_catalog,
    prepare_catalog_upload, reconcile_payment
)
from market import CatalogUpload, CostEstimate, MarketContract, TransactionResult, UPLOAD_PRODUCT
from calldata import selector

from conftest import MARKET, make_order

HEADER = ('Compound,Quantity,Price,Supplier,COA,Shipping,Total,Unit,Ship time,'
          'Description,CAS,Formula,Molar weight')

def catalog_csv(*rows):
    return '\n'.join([HEADER, *rows]) + '\n'

def catalog_at(timestamp, price, shipping='2'):
    products = parse_catalog(catalog_csv(f'Caffeine,10g,{price},Acme,,{shipping},100,g,3,,58-08-2,C8H10N4O2,194.19'))
    return ProductCatalog(products=products, timestamp=timestamp)

def test_parse_catalog_columns():
    text = catalog_csv(
        'Caffeine,10g,12.50,Acme,https://a.example/1|https://a.example/2,2.5,100,g,5 days,Pure,58-08-2,C8H10N4O2,194.19',
        '',
        'Theanine,5g,abc'
    )

    products = parse_catalog(text, vendor_addr='0xSeller', vendor_secp256k1='0x04ab', first_id=7)

    assert [p.id for p in products] == [7, 8]
    caffeine, theanine = products
    assert caffeine.price == Decimal('12.50')
    assert caffeine.shipping_cost == Decimal('2.5')
    assert caffeine.total_price == Decimal('15.00')
    assert caffeine.coa_links == ['https://a.example/1', 'https://a.example/2']
    assert caffeine.ship_time == 5
    assert caffeine.molar_weight == '194.19'
    assert caffeine.vendor_addr == '0xSeller'
    # Short rows are padded and bad numbers read as zero
    assert theanine.price == 0
    assert theanine.shipping_cost == 0
    assert theanine.coa_links == []
    assert theanine.molar_weight == ''

def test_quoted_fields():
    products = parse_catalog(catalog_csv('"Vitamin C, buffered",100g,"9.99"'))
    assert products[0].compound_name == 'Vitamin C, buffered'
    assert products[0].price == Decimal('9.99')

def test_header_only_catalog_is_empty():
    with pytest.raises(EmptyCatalogError):
        parse_catalog(HEADER + '\n\n')

def test_decompress_rejects_non_gzip():
    with pytest.raises(CatalogParseError):
        decompress_catalog(b'plain text')

def test_expected_price_uses_catalog_in_effect():
    catalogs = [catalog_at(100, '8'), catalog_at(200, '10')]

    assert find_expected_price(make_order(150), catalogs) == Decimal('10')
    assert find_expected_price(make_order(50), catalogs) is None
    assert find_expected_price(make_order(250), catalogs) == Decimal('12')
    assert find_expected_price(make_order(200), catalogs) == Decimal('12')

def test_expected_price_requires_exact_match():
    catalogs = [catalog_at(100, '8')]
    assert find_expected_price(make_order(150, quantity='20g'), catalogs) is None
    assert find_expected_price(make_order(150, compound_name='caffeine'), catalogs) is None

def test_reconcile_payment_statuses():
    catalogs = [catalog_at(100, '8')]

    exact = reconcile_payment(make_order(150, usdt_raw=10_000_000), catalogs)
    assert exact.expected == Decimal('10')
    assert exact.received == Decimal('10')
    assert exact.difference == 0
    assert exact.status == 'exact'

    assert reconcile_payment(make_order(150, usdt_raw=12_500_000), catalogs).status == 'surplus'

    short = reconcile_payment(make_order(150, usdt_raw=9_000_000), catalogs)
    assert short.difference == Decimal('-1')
    assert short.status == 'shortfall'

    unknown = reconcile_payment(make_order(50, usdt_raw=9_000_000), catalogs)
    assert unknown.expected is None
    assert unknown.difference is None
    assert unknown.status == 'unknown'

def upload(seller, link, timestamp, pubkey=None):
    return CatalogUpload(
        seller_address=seller.address,
        seller_pubkey=pubkey or seller.uncompressed_public_key.upper().replace('0X', '0x'),
        link=link,
        timestamp=timestamp
    )

@pytest.mark.asyncio
async def test_loader_filters_sorts_and_numbers_products(seller, buyer):
    payloads = {
        '0xold': gzip.compress(catalog_csv('A,1g,1', 'B,1g,2').encode()),
        '0xnew': gzip.compress(catalog_csv('C,1g,3').encode()),
        '0xempty': gzip.compress((HEADER + '\n').encode()),
        '0xbroken': b'not gzip',
        '0xforeign': gzip.compress(catalog_csv('D,1g,4').encode()),
    }
    market = Mock()
    market.get_products = AsyncMock(return_value=[
        upload(seller, '0xold', 100),
        upload(seller, '0xempty', 150),
        upload(buyer, '0xforeign', 120, pubkey=buyer.uncompressed_public_key),
        upload(seller, '0xbroken', 160),
        upload(seller, '0xnew', 300),
    ])
    market.get_transaction_input = AsyncMock(side_effect=lambda link: payloads[link])
    reported = []

    catalogs = await CatalogLoader(market, report_error=reported.append).load(seller)

    assert [c.timestamp for c in catalogs] == [100, 300]
    assert [p.compound_name for c in catalogs for p in c.products] == ['A', 'B', 'C']
    assert [p.id for c in catalogs for p in c.products] == [0, 1, 2]
    assert catalogs[0].products[0].vendor_addr == seller.address
    assert len(reported) == 1
    assert reported[0].startswith('Failed to parse catalog 0xbroken:')

@pytest.mark.asyncio
async def test_loader_reports_fetch_failures(seller):
    market = Mock()
    market.get_products = AsyncMock(return_value=[upload(seller, '0xgone', 100)])
    market.get_transaction_input = AsyncMock(side_effect=RuntimeError('not found'))
    reported = []

    catalogs = await CatalogLoader(market, report_error=reported.append).load(seller)

    assert catalogs == []
    assert reported == ['Failed to parse catalog 0xgone: not found']

def test_prepare_upload_validates_shape():
    with pytest.raises(CatalogParseError, match='at least a header'):
        prepare_catalog_upload(HEADER)
    with pytest.raises(CatalogParseError, match='Row 3 has 2 columns, expected 13'):
        prepare_catalog_upload(catalog_csv('A,1g,1,,,,,,,,,,', 'B,1g'))

    text = catalog_csv('A,1g,1,,,,,,,,,,')
    assert decompress_catalog(prepare_catalog_upload(text)) == text

@pytest.fixture
def market():
    contract = MarketContract(Mock(), MARKET)
    contract.send_transaction = AsyncMock(side_effect=[
        TransactionResult(tx_hash='0x' + '0d' * 32, block_number=10, gas_used=50_000),
        TransactionResult(tx_hash='0x' + '0e' * 32, block_number=11, gas_used=80_000),
    ])
    contract.estimate_cost = AsyncMock(return_value=CostEstimate(gas=130_000, gas_price=10, cost_wei=1_300_000))
    return contract

def decode_upload_call(data):
    assert data[:4] == selector(UPLOAD_PRODUCT)
    return abi_decode(['bytes', 'string'], data[4:])

@pytest.mark.asyncio
async def test_upload_products_registers_data_transaction(seller, market):
    payload = prepare_catalog_upload(catalog_csv('A,1g,1,,,,,,,,,,'))

    result = await CatalogPublisher(market).upload_products(seller, payload)

    assert result.tx_hash == '0x' + '0e' * 32
    assert result.gas_used == 130_000
    data_call, contract_call = market.send_transaction.await_args_list
    assert data_call.args == (seller, seller.address, payload)
    assert contract_call.args[1] == market.address
    pubkey, link = decode_upload_call(contract_call.args[2])
    assert '0x' + pubkey.hex() == seller.uncompressed_public_key
    assert link == '0x' + '0d' * 32

@pytest.mark.asyncio
async def test_estimate_upload_cost_uses_placeholder_link(seller, market):
    payload = prepare_catalog_upload(catalog_csv('A,1g,1,,,,,,,,,,'))

    estimate = await CatalogPublisher(market).estimate_upload_cost(seller, payload)

    assert estimate.cost_eth == Decimal('0.0000000000013')
    sender, calls = market.estimate_cost.await_args.args
    assert sender == seller.address
    assert calls[0] == {'to': seller.address, 'data': payload}
    assert calls[1]['to'] == market.address
    assert decode_upload_call(calls[1]['data'])[1] == PLACEHOLDER_LINK
