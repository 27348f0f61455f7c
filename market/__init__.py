"""Market module: the fixed ABI surface of the marketplace contract.

This module provides:
- Seller approval checks (approvedSellers / blacklistedSellers views)
- Catalog upload records (getProducts view)
- Raw transaction input retrieval for catalog payloads
- Gas estimation and locally signed submission of contract calls
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_account import Account
from eth_utils import to_bytes, to_checksum_address
from pydantic import BaseModel, ConfigDict

from calldata import encode_call, selector
from identity import Identity
from rpc import EthereumRPC

logger = logging.getLogger(__name__)

APPROVED_SELLERS = 'approvedSellers(address)'
BLACKLISTED_SELLERS = 'blacklistedSellers(address)'
GET_PRODUCTS = 'getProducts()'
UPLOAD_PRODUCT = 'uploadProduct(bytes,string)'

WEI_PER_ETH = Decimal(10) ** 18

class MarketError(Exception):
    """Raised when the contract or the node returns something unusable."""
    pass

class CatalogUpload(BaseModel):
    """One `getProducts()` entry: a seller's catalog upload."""
    model_config = ConfigDict(frozen=True)

    seller_address: str
    seller_pubkey: str
    link: str
    timestamp: int

class CostEstimate(BaseModel):
    """Gas estimate for a transaction at the current gas price."""
    model_config = ConfigDict(frozen=True)

    gas: int
    gas_price: int
    cost_wei: int

    @property
    def cost_eth(self) -> Decimal:
        return Decimal(self.cost_wei) / WEI_PER_ETH

class TransactionResult(BaseModel):
    """Outcome of a mined transaction."""
    model_config = ConfigDict(frozen=True)

    tx_hash: str
    block_number: int
    gas_used: int

def _hex(data: bytes) -> str:
    return '0x' + data.hex()

class MarketContract:
    """Reads from and writes to the marketplace contract through a JSON-RPC node.

    RPC calls are blocking (requests); every coroutine here runs them in a
    worker thread so the event loop keeps serving other tasks.
    """

    def __init__(self, rpc: EthereumRPC, address: str, chain_id: int = 1,
                 receipt_timeout: float = 300):
        self.rpc = rpc
        self.address = to_checksum_address(address)
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout

    async def _call(self, data: bytes) -> bytes:
        result = await asyncio.to_thread(
            self.rpc.eth_call,
            {'to': self.address, 'data': _hex(data)},
            'latest'
        )
        return to_bytes(hexstr=result)

    async def _view_bool(self, signature: str, address: str) -> bool:
        raw = await self._call(encode_call(signature, [to_checksum_address(address)]))
        try:
            (value,) = abi_decode(['bool'], raw)
        except DecodingError as e:
            raise MarketError(f"{signature} returned undecodable data: {e}") from e
        return value

    async def is_approved_seller(self, seller_address: str) -> bool:
        """True when the seller is approved and not blacklisted."""
        approved, blacklisted = await asyncio.gather(
            self._view_bool(APPROVED_SELLERS, seller_address),
            self._view_bool(BLACKLISTED_SELLERS, seller_address)
        )
        return approved and not blacklisted

    async def get_products(self) -> List[CatalogUpload]:
        """All catalog uploads recorded by the contract, in contract order."""
        raw = await self._call(selector(GET_PRODUCTS))
        try:
            (entries,) = abi_decode(['(address,bytes,string,uint256)[]'], raw)
        except DecodingError as e:
            raise MarketError(f"getProducts returned undecodable data: {e}") from e
        return [
            CatalogUpload(
                seller_address=to_checksum_address(seller),
                seller_pubkey=_hex(pubkey),
                link=link,
                timestamp=timestamp
            )
            for seller, pubkey, link, timestamp in entries
        ]

    async def get_transaction_input(self, tx_hash: str) -> bytes:
        """Input bytes of a mined transaction (catalog payloads live there)."""
        tx = await asyncio.to_thread(self.rpc.eth_getTransactionByHash, tx_hash)
        if not tx:
            raise MarketError(f"Transaction {tx_hash} not found")
        return to_bytes(hexstr=tx.get('input') or tx.get('data') or '0x')

    async def gas_price(self) -> int:
        return int(await asyncio.to_thread(self.rpc.eth_gasPrice), 16)

    async def estimate_gas(self, sender: str, to: str, data: bytes, value: int = 0) -> int:
        tx = {'from': sender, 'to': to_checksum_address(to), 'data': _hex(data), 'value': hex(value)}
        return int(await asyncio.to_thread(self.rpc.eth_estimateGas, tx), 16)

    async def estimate_cost(self, sender: str, calls: List[Dict[str, Any]]) -> CostEstimate:
        """Estimate the summed gas of `calls` ({'to', 'data'}) priced at the current gas price."""
        results = await asyncio.gather(
            self.gas_price(),
            *(self.estimate_gas(sender, call['to'], call['data']) for call in calls)
        )
        gas_price, gas = results[0], sum(results[1:])
        return CostEstimate(gas=gas, gas_price=gas_price, cost_wei=gas * gas_price)

    def _send_sync(self, identity: Identity, to: str, data: bytes, value: int) -> TransactionResult:
        to = to_checksum_address(to)
        nonce = int(self.rpc.eth_getTransactionCount(identity.address, 'pending'), 16)
        gas_price = int(self.rpc.eth_gasPrice(), 16)
        gas = int(self.rpc.eth_estimateGas({
            'from': identity.address, 'to': to, 'data': _hex(data), 'value': hex(value)
        }), 16)

        signed = Account.sign_transaction({
            'to': to,
            'value': value,
            'data': _hex(data),
            'gas': gas,
            'gasPrice': gas_price,
            'nonce': nonce,
            'chainId': self.chain_id
        }, identity.private_key)

        tx_hash = self.rpc.eth_sendRawTransaction(_hex(bytes(signed.raw_transaction)))
        logger.info(f"Sent transaction {tx_hash} from {identity.address} to {to}")

        receipt = self.rpc.wait_for_receipt(tx_hash, timeout=self.receipt_timeout)
        result = TransactionResult(
            tx_hash=tx_hash,
            block_number=int(receipt['blockNumber'], 16),
            gas_used=int(receipt['gasUsed'], 16)
        )
        logger.info(f"Transaction {tx_hash} confirmed in block {result.block_number}")
        return result

    async def send_transaction(self, identity: Identity, to: str, data: bytes,
                               value: int = 0) -> TransactionResult:
        """Sign locally, submit, and wait for the receipt.

        Raises:
            RPCError: Submission failed, reverted, or timed out
        """
        return await asyncio.to_thread(self._send_sync, identity, to, data, value)

    def upload_product_call(self, identity: Identity, link: str) -> bytes:
        pubkey = bytes.fromhex(identity.uncompressed_public_key[2:])
        return encode_call(UPLOAD_PRODUCT, [pubkey, link])

__all__ = [
    'MarketContract',
    'MarketError',
    'CatalogUpload',
    'CostEstimate',
    'TransactionResult'
]
