"""Shared fixtures: fixed keys, fake explorer and order builders."""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List

import pytest
from eth_utils import to_checksum_address

from calldata import PURCHASE_WITH_ETH, encode_call
from explorer import RawTransaction, TokenTransfer
from identity import Identity, encrypt
from orders import Order, OrderedProduct, Payment

# Well known test key and its address
SELLER_KEY = '0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318'
SELLER_ADDRESS = '0x2c7536E3605D9C16a7a3D7b1898e529396a65c23'

BUYER_KEY = '0x' + '11' * 32

MARKET = '0x5b8902de436A13Cb5097a7cF9bAd16c30fbf5902'
GATEWAY = to_checksum_address('0x' + 'ab' * 20)
USDT = '0xdac17f958d2ee523a2206206994597c13d831ec7'
USDC = '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48'

class FakeExplorer:
    """In-memory stand-in for ExplorerClient."""

    def __init__(self, transactions: Dict[str, List] = None, transfers: List = None):
        self.transactions = transactions or {}
        self.transfers = transfers or []
        self.calls = []

    async def list_transactions(self, address, sort='asc'):
        self.calls.append(('txlist', address.lower(), sort))
        return [RawTransaction.model_validate(row) for row in self.transactions.get(address.lower(), [])]

    async def list_token_transfers(self, address, sort='desc'):
        self.calls.append(('tokentx', address.lower(), sort))
        return [TokenTransfer.model_validate(row) for row in self.transfers]

@pytest.fixture
def seller():
    return Identity.from_private_key(SELLER_KEY)

@pytest.fixture
def buyer():
    return Identity.from_private_key(BUYER_KEY)

def order_document(buyer: Identity, compound_name='Caffeine', quantity='10g',
                   created_at='2024-01-02T03:04:05Z') -> Dict:
    return {
        'product': {
            'compound_name': compound_name,
            'quantity': quantity,
            'price': '8',
            'shipping_cost': '2'
        },
        'created_at': created_at,
        'shipping_address': {
            'name': 'Ada Buyer',
            'street1': '1 Main St',
            'city': 'Springfield',
            'state': 'IL',
            'country': 'US',
            'postcode': '62701'
        },
        'buyer_secp256k1': buyer.public_key
    }

def purchase_input(seller: Identity, document: Dict, trailer: str = 'buyer-note') -> str:
    """Hex calldata of a purchaseWithEth call carrying an encrypted order."""
    envelope = encrypt(seller.public_key, json.dumps(document))
    payload = f"{envelope}@@@{trailer}".encode('utf-8')
    data = encode_call(PURCHASE_WITH_ETH, [1, to_checksum_address('0x' + 'cd' * 20), GATEWAY, 0, payload])
    return '0x' + data.hex()

def raw_tx(tx_hash: str, sender: str, to: str, data: str = '0x', value: int = 0,
           is_error: str = '0', status: str = '1') -> Dict:
    return {
        'hash': tx_hash,
        'from': sender.lower(),
        'to': to.lower(),
        'input': data,
        'value': str(value),
        'isError': is_error,
        'txreceipt_status': status,
        'timeStamp': '1704164645',
        'blockNumber': '19000000'
    }

def make_order(created_at: float, compound_name='Caffeine', quantity='10g',
               usdt_raw: int = 0, trx_hash: str = '0x' + 'aa' * 32,
               reply_trx_hash=None) -> Order:
    return Order(
        product=OrderedProduct(compound_name=compound_name, quantity=quantity, price=Decimal(8)),
        created_at=datetime.fromtimestamp(created_at, tz=timezone.utc),
        trx_hash=trx_hash,
        buyer_address='0x' + 'cd' * 20,
        buyer_gateway=GATEWAY,
        payment=Payment(tokens={'USDT': usdt_raw} if usdt_raw else {}),
        reply_trx_hash=reply_trx_hash
    )
