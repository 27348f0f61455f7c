"""Catalogs module for the seller's on-chain product catalogs.

This module provides functionality for:
- Loading every catalog the seller uploaded and parsing it into products
- Picking the catalog in effect when an order was placed
- Reconciling the amount paid against the catalog price
- Validating, compressing and uploading new catalogs
"""

import csv
import gzip
import io
import logging
import re
import zlib
from decimal import Decimal, InvalidOperation
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from identity import Identity
from market import CatalogUpload, CostEstimate, MarketContract, TransactionResult
from orders import Order

logger = logging.getLogger(__name__)

# Column layout of a catalog row
COLUMNS = (
    'compound_name',
    'quantity',
    'price',
    'supplier',
    'coa_link',
    'shipping_cost',
    'total_quantity',
    'total_quantity_unit',
    'ship_time',
    'description',
    'cas_number',
    'chemical_formula',
    'molar_weight',
)

LINK_SEPARATOR = '|'

# Link used when estimating an upload before the data transaction exists
PLACEHOLDER_LINK = '0x' + '0' * 64

_DECIMAL_PREFIX = re.compile(r'\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)')
_INT_PREFIX = re.compile(r'\s*([+-]?\d+)')

class CatalogParseError(Exception):
    """Raised when a catalog payload cannot be turned into products."""
    pass

class EmptyCatalogError(CatalogParseError):
    """Raised for a catalog holding a header and no products."""
    pass

class Product(BaseModel):
    """One catalog row."""
    model_config = ConfigDict(frozen=True)

    id: int
    compound_name: str
    quantity: str
    price: Decimal
    shipping_cost: Decimal
    supplier: str = ''
    coa_links: List[str] = []
    total_quantity: str = ''
    total_quantity_unit: str = ''
    ship_time: int = 0
    description: str = ''
    cas_number: str = ''
    chemical_formula: str = ''
    molar_weight: str = ''
    vendor_addr: str = ''
    vendor_secp256k1: str = ''

    @property
    def total_price(self) -> Decimal:
        return self.price + self.shipping_cost

class ProductCatalog(BaseModel):
    """A timestamped snapshot of the seller's products."""
    model_config = ConfigDict(frozen=True)

    products: List[Product]
    timestamp: int
    link: str = ''

    def find(self, compound_name: str, quantity: str) -> Optional[Product]:
        for product in self.products:
            if product.compound_name == compound_name and product.quantity == quantity:
                return product
        return None

class PriceCheck(BaseModel):
    """Payment received versus the catalog price in effect at order time."""
    model_config = ConfigDict(frozen=True)

    expected: Optional[Decimal] = None
    received: Decimal
    difference: Optional[Decimal] = None

    @property
    def status(self) -> str:
        if self.difference is None:
            return 'unknown'
        if self.difference > 0:
            return 'surplus'
        if self.difference < 0:
            return 'shortfall'
        return 'exact'

def parse_decimal(text: str) -> Decimal:
    """Leading decimal number of `text`, 0 when there is none."""
    match = _DECIMAL_PREFIX.match(text or '')
    if not match:
        return Decimal(0)
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return Decimal(0)

def parse_int(text: str) -> int:
    match = _INT_PREFIX.match(text or '')
    return int(match.group(1)) if match else 0

def read_rows(csv_text: str) -> List[List[str]]:
    """CSV rows with blank lines dropped."""
    try:
        rows = list(csv.reader(io.StringIO(csv_text)))
    except csv.Error as e:
        raise CatalogParseError(f"Invalid CSV: {e}") from e
    return [row for row in rows if any(cell.strip() for cell in row)]

def parse_catalog(csv_text: str, vendor_addr: str = '', vendor_secp256k1: str = '',
                  first_id: int = 0) -> List[Product]:
    """Turn catalog CSV into products; the first row is a header.

    Raises:
        EmptyCatalogError: Header only
        CatalogParseError: Unreadable CSV
    """
    rows = read_rows(csv_text)
    if len(rows) < 2:
        raise EmptyCatalogError("Catalog has no product rows")

    products = []
    for offset, row in enumerate(rows[1:]):
        cols = list(row) + [''] * (len(COLUMNS) - len(row))
        products.append(Product(
            id=first_id + offset,
            compound_name=cols[0],
            quantity=cols[1],
            price=parse_decimal(cols[2]),
            supplier=cols[3],
            coa_links=[link for link in cols[4].split(LINK_SEPARATOR) if link.strip()],
            shipping_cost=parse_decimal(cols[5]),
            total_quantity=cols[6],
            total_quantity_unit=cols[7],
            ship_time=parse_int(cols[8]),
            description=cols[9],
            cas_number=cols[10],
            chemical_formula=cols[11],
            molar_weight=cols[12],
            vendor_addr=vendor_addr,
            vendor_secp256k1=vendor_secp256k1
        ))
    return products

def decompress_catalog(payload: bytes) -> str:
    """Gunzip and decode an uploaded catalog payload."""
    try:
        return gzip.decompress(payload).decode('utf-8')
    except (OSError, EOFError, zlib.error) as e:
        raise CatalogParseError(f"Catalog payload is not gzip: {e}") from e
    except UnicodeDecodeError as e:
        raise CatalogParseError(f"Catalog is not UTF-8 text: {e}") from e

def prepare_catalog_upload(csv_text: str) -> bytes:
    """Validate catalog CSV and return the gzip payload to upload.

    Raises:
        CatalogParseError: Fewer than two rows, or rows of unequal width
    """
    rows = read_rows(csv_text)
    if len(rows) < 2:
        raise CatalogParseError("CSV must have at least a header and one row")
    header_cols = len(rows[0])
    for index, row in enumerate(rows[1:], start=2):
        if len(row) != header_cols:
            raise CatalogParseError(
                f"Row {index} has {len(row)} columns, expected {header_cols}"
            )
    return gzip.compress(csv_text.encode('utf-8'))

def uploads_for(uploads: Iterable[CatalogUpload], identity: Identity) -> List[CatalogUpload]:
    """Uploads whose embedded public key is the seller's (0x04 uncompressed form)."""
    mine = identity.uncompressed_public_key.lower()
    return [upload for upload in uploads if upload.seller_pubkey.lower() == mine]

def find_catalog(catalogs: Iterable[ProductCatalog], order_time: float) -> Optional[ProductCatalog]:
    """Latest catalog whose timestamp does not exceed `order_time`."""
    applicable = [catalog for catalog in catalogs if catalog.timestamp <= order_time]
    if not applicable:
        return None
    return max(applicable, key=lambda catalog: catalog.timestamp)

def find_expected_price(order: Order, catalogs: Iterable[ProductCatalog]) -> Optional[Decimal]:
    """Price plus shipping of the ordered product in the catalog in effect at order time.

    None means unknown: no catalog preceded the order, or it lacks the product.
    """
    catalog = find_catalog(catalogs, order.order_time())
    if catalog is None:
        return None
    product = catalog.find(order.product.compound_name, order.product.quantity)
    if product is None:
        return None
    return product.total_price

def reconcile_payment(order: Order, catalogs: Iterable[ProductCatalog]) -> PriceCheck:
    received = order.payment.stablecoin_total()
    expected = find_expected_price(order, catalogs)
    if expected is None:
        return PriceCheck(received=received)
    return PriceCheck(expected=expected, received=received, difference=received - expected)

ErrorReporter = Callable[[str], None]

class CatalogLoader:
    """Loads the seller's catalog history from the contract."""

    def __init__(self, market: MarketContract, report_error: Optional[ErrorReporter] = None):
        self.market = market
        self.report_error = report_error

    def _report(self, message: str) -> None:
        logger.error(message)
        if self.report_error:
            self.report_error(message)

    async def load(self, identity: Identity) -> List[ProductCatalog]:
        """All of the seller's catalogs, oldest first.

        A catalog that cannot be fetched or parsed is reported and skipped; a
        header-only catalog is skipped without a report.
        """
        uploads = uploads_for(await self.market.get_products(), identity)

        catalogs = []
        next_id = 0
        for upload in uploads:
            try:
                payload = await self.market.get_transaction_input(upload.link)
                products = parse_catalog(
                    decompress_catalog(payload),
                    vendor_addr=upload.seller_address,
                    vendor_secp256k1=upload.seller_pubkey,
                    first_id=next_id
                )
            except EmptyCatalogError:
                logger.info(f"Skipping empty catalog {upload.link}")
                continue
            except Exception as e:
                self._report(f"Failed to parse catalog {upload.link}: {e}")
                continue
            next_id += len(products)
            catalogs.append(ProductCatalog(products=products, timestamp=upload.timestamp, link=upload.link))

        catalogs.sort(key=lambda catalog: catalog.timestamp)
        logger.info(f"Loaded {len(catalogs)} catalogs with {next_id} products")
        return catalogs

class CatalogPublisher:
    """Uploads catalogs and reads back earlier uploads."""

    def __init__(self, market: MarketContract):
        self.market = market

    def _calls(self, identity: Identity, payload: bytes, link: str):
        return [
            {'to': identity.address, 'data': payload},
            {'to': self.market.address, 'data': self.market.upload_product_call(identity, link)}
        ]

    async def estimate_upload_cost(self, identity: Identity, payload: bytes) -> CostEstimate:
        """Gas for the data transaction plus the `uploadProduct` call."""
        return await self.market.estimate_cost(
            identity.address, self._calls(identity, payload, PLACEHOLDER_LINK)
        )

    async def upload_products(self, identity: Identity, payload: bytes) -> TransactionResult:
        """Store `payload` in a self-addressed transaction, then register it with the contract."""
        logger.info(f"Uploading catalog of {len(payload)} bytes for {identity.address}")
        data_result = await self.market.send_transaction(identity, identity.address, payload)

        call = self.market.upload_product_call(identity, data_result.tx_hash)
        contract_result = await self.market.send_transaction(identity, self.market.address, call)

        return TransactionResult(
            tx_hash=contract_result.tx_hash,
            block_number=contract_result.block_number,
            gas_used=data_result.gas_used + contract_result.gas_used
        )

    async def fetch_my_uploads(self, identity: Identity) -> List[CatalogUpload]:
        return uploads_for(await self.market.get_products(), identity)

    async def retrieve_catalog_text(self, link: str) -> str:
        """Decompressed CSV of an upload."""
        return decompress_catalog(await self.market.get_transaction_input(link))

__all__ = [
    'CatalogParseError',
    'EmptyCatalogError',
    'Product',
    'ProductCatalog',
    'PriceCheck',
    'parse_catalog',
    'decompress_catalog',
    'prepare_catalog_upload',
    'uploads_for',
    'find_catalog',
    'find_expected_price',
    'reconcile_payment',
    'CatalogLoader',
    'CatalogPublisher',
    'COLUMNS'
]
