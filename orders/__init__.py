"""Orders module for ingesting marketplace orders addressed to the seller.

This module handles order assembly, payment aggregation and fulfillment.
Purchases are read from the contract's transaction history, decrypted with
the seller's key, paid amounts are summed from native value and token
transfer logs, and replies sent by the seller mark orders as fulfilled.
"""
import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Iterable

from pydantic import BaseModel, ConfigDict, ValidationError

from calldata import DecodedPurchase, DecodedReply, REPLY_TO_ORDER, encode_call, decode
from explorer import ExplorerClient, RawTransaction, TokenTransfer
from identity import Identity, encrypt
from market import CostEstimate, MarketContract, TransactionResult

logger = logging.getLogger(__name__)

# Separates the encrypted order from the buyer's plaintext trailer
PAYLOAD_SEPARATOR = '@@@'

ETH_DECIMALS = 18

class OrderError(Exception):
    """Base class for order-related errors."""
    pass

class OrderPayloadError(OrderError):
    """Raised when a decrypted order does not match the order schema."""
    pass

class Asset(BaseModel):
    """A token the marketplace accepts as payment."""
    model_config = ConfigDict(frozen=True)

    symbol: str
    decimals: int
    stablecoin: bool = False

# Lowercase token contract -> asset
KNOWN_ASSETS: Dict[str, Asset] = {
    '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48': Asset(symbol='USDC', decimals=6, stablecoin=True),
    '0xdac17f958d2ee523a2206206994597c13d831ec7': Asset(symbol='USDT', decimals=6, stablecoin=True),
    '0x2260fac5e5542a773aa44fbcfedf7c193bc2c599': Asset(symbol='WBTC', decimals=8),
}

ASSETS_BY_SYMBOL: Dict[str, Asset] = {asset.symbol: asset for asset in KNOWN_ASSETS.values()}

def scale(raw: int, decimals: int) -> Decimal:
    """Human readable amount of `raw` minor units."""
    return Decimal(raw).scaleb(-decimals)

class Payment(BaseModel):
    """What a purchase paid the seller, kept in minor units."""
    model_config = ConfigDict(frozen=True)

    wei: int = 0
    tokens: Dict[str, int] = {}

    @property
    def eth(self) -> Decimal:
        return scale(self.wei, ETH_DECIMALS)

    def amount(self, symbol: str) -> Decimal:
        asset = ASSETS_BY_SYMBOL[symbol]
        return scale(self.tokens.get(symbol, 0), asset.decimals)

    def amounts(self) -> Dict[str, Decimal]:
        """ETH plus every known asset, as decimals."""
        result = {'ETH': self.eth}
        for symbol in ASSETS_BY_SYMBOL:
            result[symbol] = self.amount(symbol)
        return result

    def stablecoin_total(self) -> Decimal:
        """Dollar value received in stablecoins, the unit catalog prices are quoted in."""
        return sum(
            (self.amount(asset.symbol) for asset in ASSETS_BY_SYMBOL.values() if asset.stablecoin),
            Decimal(0)
        )

def build_payment(value_wei: int, transfers: Iterable[TokenTransfer], seller_address: str) -> Payment:
    """Sum native value and the token legs paid to the seller.

    Transfers to any other recipient and transfers of unknown tokens are ignored.
    """
    seller = seller_address.lower()
    tokens: Dict[str, int] = defaultdict(int)
    for transfer in transfers:
        if not transfer.to or transfer.to.lower() != seller:
            continue
        asset = KNOWN_ASSETS.get(transfer.contract_address.lower())
        if asset is None:
            continue
        tokens[asset.symbol] += transfer.value
    return Payment(wei=value_wei, tokens=dict(tokens))

class ShippingAddress(BaseModel):
    model_config = ConfigDict(frozen=True, extra='ignore')

    name: str
    phone: str = ''
    email: str = ''
    street1: str
    street2: str = ''
    city: str
    state: str = ''
    country: str
    postcode: str = ''

    def label(self) -> str:
        """Multi-line postal label."""
        lines = [self.name]
        if self.phone:
            lines.append(f"Phone: {self.phone}")
        lines.append(self.street1)
        if self.street2:
            lines.append(self.street2)
        lines.append(f"{self.city}, {self.state} {self.postcode}")
        lines.append(self.country)
        if self.email:
            lines.append(f"Email: {self.email}")
        return "\n".join(lines)

class OrderedProduct(BaseModel):
    """The catalog row a buyer ordered, as embedded in the order."""
    model_config = ConfigDict(frozen=True, extra='ignore')

    compound_name: str
    quantity: str
    price: Decimal = Decimal(0)
    shipping_cost: Decimal = Decimal(0)
    supplier: str = ''
    cas_number: str = ''
    vendor_addr: str = ''
    vendor_secp256k1: str = ''

class OrderPayload(BaseModel):
    """Decrypted order document."""
    model_config = ConfigDict(frozen=True, extra='ignore')

    product: OrderedProduct
    created_at: datetime
    shipping_address: Optional[ShippingAddress] = None
    status: str = 'pending'
    buyer_secp256k1: Optional[str] = None
    qa_participant: bool = False
    contract_address: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> 'OrderPayload':
        """Parse decrypted JSON.

        Raises:
            OrderPayloadError: Not JSON, or not shaped like an order
        """
        try:
            return cls.model_validate(json.loads(text))
        except json.JSONDecodeError as e:
            raise OrderPayloadError(f"Order is not JSON: {e}") from e
        except ValidationError as e:
            raise OrderPayloadError(f"Order does not match schema: {e}") from e

class Order(OrderPayload):
    """An order with its on-chain context."""

    trx_hash: str
    buyer_address: str
    buyer_gateway: str
    payment: Payment
    reply_trx_hash: Optional[str] = None

    @property
    def fulfilled(self) -> bool:
        return bool(self.reply_trx_hash)

    @property
    def can_fulfill(self) -> bool:
        return bool(self.buyer_address and self.buyer_gateway and self.buyer_secp256k1)

    def order_time(self) -> float:
        """Creation time in epoch seconds (naive timestamps are taken as UTC)."""
        created = self.created_at
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created.timestamp()

class FulfillmentData(BaseModel):
    """Reply sent to the buyer, encrypted for their key."""
    order_trxn_hash: str
    tracking_url: str = ''
    message: str = ''

ErrorReporter = Callable[[str], None]

def attach_replies(orders: Iterable[Order], replies: Dict[str, str]) -> List[Order]:
    """Set each order's reply hash from the index (case-insensitive on the order hash)."""
    return [
        order.model_copy(update={'reply_trx_hash': replies.get(order.trx_hash.lower())})
        for order in orders
    ]

class OrderAssembler:
    """Builds the seller's order list from explorer data."""

    def __init__(self, explorer: ExplorerClient, market_address: str,
                 report_error: Optional[ErrorReporter] = None) -> None:
        """Initialize order assembler.

        Args:
            explorer: Explorer client (rate limited)
            market_address: Marketplace contract address
            report_error: Optional callback receiving per-transaction failure messages
        """
        self.explorer = explorer
        self.market_address = market_address
        self.report_error = report_error

    def _report(self, message: str) -> None:
        logger.error(message)
        if self.report_error:
            self.report_error(message)

    def _build_order(self, tx: RawTransaction, identity: Identity,
                     transfers: List[TokenTransfer]) -> Optional[Order]:
        decoded = decode(tx.input)
        if not isinstance(decoded, DecodedPurchase):
            return None

        text = decoded.text
        if PAYLOAD_SEPARATOR not in text:
            return None

        envelope = text.split(PAYLOAD_SEPARATOR)[0]
        payload = OrderPayload.parse(identity.decrypt(envelope))

        return Order(
            **payload.model_dump(),
            trx_hash=tx.hash,
            buyer_address=tx.from_address,
            buyer_gateway=decoded.buyer_gateway,
            payment=build_payment(tx.value, transfers, identity.address)
        )

    async def list_orders(self, identity: Identity) -> List[Order]:
        """Decrypt every purchase addressed to `identity`, in chain order.

        A transaction that fails to decode, decrypt or validate is reported and
        left out; the rest of the batch is still returned.
        """
        transactions, token_transfers = await asyncio.gather(
            self.explorer.list_transactions(self.market_address, sort='asc'),
            self.explorer.list_token_transfers(self.market_address, sort='desc')
        )

        incoming = [
            tx for tx in transactions
            if tx.sent_to(self.market_address) and tx.succeeded
        ]

        seller = identity.address.lower()
        transfers_by_tx: Dict[str, List[TokenTransfer]] = defaultdict(list)
        for transfer in token_transfers:
            if not transfer.to or transfer.to.lower() != seller:
                continue
            transfers_by_tx[transfer.hash.lower()].append(transfer)

        orders = []
        for tx in incoming:
            try:
                order = self._build_order(tx, identity, transfers_by_tx.get(tx.hash.lower(), []))
            except Exception as e:
                self._report(f"Failed to process tx {tx.hash}: {e}")
                continue
            if order is not None:
                orders.append(order)

        logger.info(f"Assembled {len(orders)} orders from {len(incoming)} contract transactions")
        return orders

    async def fetch_reply_index(self, seller_address: str) -> Dict[str, str]:
        """Map lowercase order hash -> hash of the seller's reply transaction."""
        transactions = await self.explorer.list_transactions(seller_address, sort='asc')
        seller = seller_address.lower()

        replies: Dict[str, str] = {}
        for tx in transactions:
            if not tx.sent_to(self.market_address):
                continue
            if tx.from_address.lower() != seller or not tx.succeeded:
                continue
            try:
                decoded = decode(tx.input)
            except Exception as e:
                logger.warning(f"Skipping undecodable reply {tx.hash}: {e}")
                continue
            if not isinstance(decoded, DecodedReply):
                continue
            logger.debug(f"Found reply {tx.hash} for order {decoded.order_txn_hash}")
            replies[decoded.order_txn_hash.lower()] = tx.hash

        return replies

    async def assemble(self, identity: Identity) -> List[Order]:
        """Orders with fulfillment status attached."""
        orders, replies = await asyncio.gather(
            self.list_orders(identity),
            self.fetch_reply_index(identity.address)
        )
        return attach_replies(orders, replies)

class FulfillmentService:
    """Sends encrypted fulfillment replies for orders."""

    def __init__(self, market: MarketContract) -> None:
        self.market = market

    def build_reply_call(self, order: Order, fulfillment: FulfillmentData) -> bytes:
        """Calldata for `replyToOrder` carrying `fulfillment` encrypted for the buyer."""
        if not order.can_fulfill:
            raise OrderError(
                f"Order {order.trx_hash} lacks buyer address, gateway or public key"
            )
        envelope = encrypt(order.buyer_secp256k1, fulfillment.model_dump_json())
        try:
            order_hash = bytes.fromhex(order.trx_hash[2:] if order.trx_hash.startswith('0x') else order.trx_hash)
        except ValueError as e:
            raise OrderError(f"Order hash {order.trx_hash} is not hex") from e
        if len(order_hash) != 32:
            raise OrderError(f"Order hash {order.trx_hash} is not 32 bytes")
        return encode_call(REPLY_TO_ORDER, [
            order.buyer_address,
            order.buyer_gateway,
            order_hash,
            envelope.encode('utf-8')
        ])

    async def estimate_reply_cost(self, identity: Identity, order: Order,
                                  fulfillment: FulfillmentData) -> CostEstimate:
        call = self.build_reply_call(order, fulfillment)
        return await self.market.estimate_cost(
            identity.address, [{'to': self.market.address, 'data': call}]
        )

    async def reply_to_order(self, identity: Identity, order: Order,
                             fulfillment: FulfillmentData) -> TransactionResult:
        call = self.build_reply_call(order, fulfillment)
        result = await self.market.send_transaction(identity, self.market.address, call)
        logger.info(f"Replied to order {order.trx_hash} with {result.tx_hash}")
        return result

__all__ = [
    'OrderError',
    'OrderPayloadError',
    'Asset',
    'KNOWN_ASSETS',
    'Payment',
    'build_payment',
    'ShippingAddress',
    'OrderedProduct',
    'OrderPayload',
    'Order',
    'FulfillmentData',
    'attach_replies',
    'OrderAssembler',
    'FulfillmentService',
    'PAYLOAD_SEPARATOR'
]
