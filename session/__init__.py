"""Session module: the seller's working context and refresh orchestration.

A Session owns the current identity, the last assembled orders and catalogs,
and the short-lived error queue shown to the operator. Refreshes are single
flight: a refresh requested while one is running is dropped.
"""

import asyncio
import logging
import os
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import aiofiles
from pydantic import BaseModel, ConfigDict, ValidationError

from catalogs import (
    CatalogLoader, CatalogPublisher, PriceCheck, ProductCatalog, reconcile_payment
)
from explorer import ExplorerClient, RateLimitedFetcher
from identity import Identity, IdentityError
from market import MarketContract
from orders import FulfillmentData, FulfillmentService, Order, OrderAssembler
from rpc import EthereumRPC

logger = logging.getLogger(__name__)

# Seconds between staleness checks in the auto refresh loop
POLL_SECONDS = 60

class SessionError(Exception):
    """Raised when an operation needs state the session does not have."""
    pass

class SessionState(BaseModel):
    """What survives a restart."""
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    address: Optional[str] = None
    last_refreshed: Optional[float] = None

class StateStore:
    """JSON file holding the persisted session state."""

    def __init__(self, path: str):
        self.path = os.path.expanduser(path)

    async def load(self) -> SessionState:
        """Stored state, or an empty state when there is no usable file."""
        if not os.path.exists(self.path):
            return SessionState()
        async with aiofiles.open(self.path, 'r') as f:
            content = await f.read()
        try:
            return SessionState.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return SessionState()

    async def save(self, state: SessionState) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        async with aiofiles.open(tmp_path, 'w') as f:
            await f.write(state.model_dump_json(indent=2))
        # Holds the private key
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    async def clear(self) -> None:
        if os.path.exists(self.path):
            os.remove(self.path)

class ErrorQueue:
    """Operator-facing error messages that expire after a few seconds."""

    def __init__(self, expiry_seconds: float = 20, clock: Callable[[], float] = time.monotonic):
        self.expiry_seconds = expiry_seconds
        self.clock = clock
        self._entries: Deque[Tuple[float, str]] = deque()

    def _prune(self) -> None:
        cutoff = self.clock() - self.expiry_seconds
        while self._entries and self._entries[0][0] <= cutoff:
            self._entries.popleft()

    def push(self, message: str) -> None:
        self._entries.append((self.clock(), message))

    def active(self) -> List[str]:
        """Unexpired messages, oldest first."""
        self._prune()
        return [message for _, message in self._entries]

    def clear(self) -> None:
        self._entries.clear()

class OrderView(BaseModel):
    """An order with its payment check against the catalog."""
    model_config = ConfigDict(frozen=True)

    order: Order
    price_check: PriceCheck

class OrderViews(BaseModel):
    model_config = ConfigDict(frozen=True)

    unfulfilled: List[OrderView]
    fulfilled: List[OrderView]

class Session:
    """Working context for one seller."""

    def __init__(self, settings: Dict[str, Any], explorer: ExplorerClient,
                 market: MarketContract, store: StateStore):
        """Initialize session.

        Args:
            settings: Validated settings (see config.load_config)
            explorer: Explorer client used for order and reply history
            market: Marketplace contract
            store: Persistence for the identity between runs
        """
        self.settings = settings
        self.market = market
        self.store = store
        self.errors = ErrorQueue(settings['error_expiry_seconds'])

        self.assembler = OrderAssembler(explorer, market.address, report_error=self.errors.push)
        self.loader = CatalogLoader(market, report_error=self.errors.push)
        self.fulfillment = FulfillmentService(market)
        self.publisher = CatalogPublisher(market)

        self.identity: Optional[Identity] = None
        self.orders: List[Order] = []
        self.catalogs: List[ProductCatalog] = []
        self.last_refreshed: Optional[float] = None
        self._loaded = False
        self._refreshing = False
        self._stop_event = asyncio.Event()

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    def require_identity(self) -> Identity:
        if self.identity is None:
            raise SessionError("No private key set")
        return self.identity

    def _state(self) -> SessionState:
        if self.identity is None:
            return SessionState(last_refreshed=self.last_refreshed)
        return SessionState(
            private_key=self.identity.private_key,
            public_key=self.identity.public_key,
            address=self.identity.address,
            last_refreshed=self.last_refreshed
        )

    async def _persist(self) -> None:
        try:
            await self.store.save(self._state())
        except OSError as e:
            logger.error(f"Failed to save session state: {e}")
            self.errors.push(f"Failed to save session state: {e}")

    def _reset_data(self) -> None:
        self.orders = []
        self.catalogs = []
        self.last_refreshed = None
        self._loaded = False

    async def restore(self) -> Optional[Identity]:
        """Load the identity saved by a previous run.

        Orders and catalogs are not persisted, so a restored session is stale
        until its first refresh.
        """
        state = await self.store.load()
        if not state.private_key:
            return None
        try:
            self.identity = Identity.from_private_key(state.private_key)
        except IdentityError as e:
            logger.warning(f"Discarding stored private key: {e}")
            return None
        self.last_refreshed = state.last_refreshed
        logger.info(f"Restored session for {self.identity.address}")
        return self.identity

    async def set_private_key(self, private_key: Optional[str]) -> Optional[Identity]:
        """Switch to the seller owning `private_key`; an empty key logs out.

        Raises:
            IdentityError: Invalid key, or the address is not an approved seller
        """
        if not private_key or not private_key.strip():
            await self.logout()
            return None

        try:
            identity = Identity.from_private_key(private_key)
        except IdentityError as e:
            raise IdentityError("Invalid private key") from e

        if not await self.market.is_approved_seller(identity.address):
            raise IdentityError("This address is not an approved seller")

        if self.identity is None or self.identity.address != identity.address:
            self._reset_data()
        self.identity = identity
        await self._persist()
        logger.info(f"Seller identity set to {identity.address}")

        if self.is_stale():
            try:
                await self.refresh()
            except Exception as e:
                logger.warning(f"Initial refresh for {identity.address} failed: {e}")
        return identity

    async def logout(self) -> None:
        self.identity = None
        self._reset_data()
        await self.store.clear()
        logger.info("Session cleared")

    def is_stale(self) -> bool:
        """True when data was never loaded or is older than the refresh interval."""
        if not self._loaded or self.last_refreshed is None:
            return True
        interval = self.settings['refresh_interval_minutes'] * 60
        return time.time() - self.last_refreshed >= interval

    async def refresh(self) -> bool:
        """Reassemble orders and catalogs for the current identity.

        Returns:
            True when new data was committed, False when skipped

        Raises:
            Exception: Whatever the assembler or loader raised; previous data is kept
        """
        if self.identity is None:
            logger.debug("Refresh skipped: no identity")
            return False
        if self._refreshing:
            logger.info("Refresh already in progress")
            return False

        identity = self.identity
        self._refreshing = True
        tasks = [
            asyncio.ensure_future(self.assembler.assemble(identity)),
            asyncio.ensure_future(self.loader.load(identity))
        ]
        try:
            orders, catalogs = await asyncio.gather(*tasks)
        except Exception as e:
            logger.error(f"Refresh failed: {e}")
            self.errors.push(f"Refresh failed: {e}")
            raise
        finally:
            # Both halves must be finished before another refresh may start
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._refreshing = False

        if self.identity is None:
            logger.info("Identity cleared during refresh, discarding results")
            return False
        if self.identity.address != identity.address:
            # The new identity's own refresh was skipped while this one ran
            logger.info("Identity changed during refresh, refreshing again")
            return await self.refresh()

        self.orders = orders
        self.catalogs = catalogs
        self.last_refreshed = time.time()
        self._loaded = True
        await self._persist()
        logger.info(f"Refreshed {len(orders)} orders and {len(catalogs)} catalogs")
        return True

    async def run_auto_refresh(self, poll_seconds: float = POLL_SECONDS) -> None:
        """Refresh whenever data is stale, until stop() is called."""
        self._stop_event.clear()
        logger.info(
            f"Auto refresh every {self.settings['refresh_interval_minutes']} minutes"
        )
        while not self._stop_event.is_set():
            if self.identity is not None and self.is_stale():
                try:
                    await self.refresh()
                except Exception as e:
                    logger.error(f"Auto refresh error: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                continue
        logger.info("Auto refresh stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def find_order(self, trx_hash: str) -> Optional[Order]:
        wanted = trx_hash.lower()
        for order in self.orders:
            if order.trx_hash.lower() == wanted:
                return order
        return None

    def price_check(self, order: Order) -> PriceCheck:
        return reconcile_payment(order, self.catalogs)

    def order_views(self) -> OrderViews:
        """Orders with price checks, split by fulfillment and newest first."""
        views = [
            OrderView(order=order, price_check=self.price_check(order))
            for order in sorted(self.orders, key=lambda o: o.order_time(), reverse=True)
        ]
        return OrderViews(
            unfulfilled=[view for view in views if not view.order.fulfilled],
            fulfilled=[view for view in views if view.order.fulfilled]
        )

    def _order_or_raise(self, trx_hash: str) -> Order:
        order = self.find_order(trx_hash)
        if order is None:
            raise SessionError(f"Order {trx_hash} not found")
        return order

    async def estimate_fulfillment(self, trx_hash: str, tracking_url: str = '', message: str = ''):
        identity = self.require_identity()
        order = self._order_or_raise(trx_hash)
        fulfillment = FulfillmentData(order_trxn_hash=order.trx_hash, tracking_url=tracking_url, message=message)
        return await self.fulfillment.estimate_reply_cost(identity, order, fulfillment)

    async def fulfill_order(self, trx_hash: str, tracking_url: str = '', message: str = ''):
        """Send the encrypted reply and mark the local order fulfilled."""
        identity = self.require_identity()
        order = self._order_or_raise(trx_hash)
        fulfillment = FulfillmentData(order_trxn_hash=order.trx_hash, tracking_url=tracking_url, message=message)
        result = await self.fulfillment.reply_to_order(identity, order, fulfillment)
        self.orders = [
            o.model_copy(update={'reply_trx_hash': result.tx_hash}) if o.trx_hash == order.trx_hash else o
            for o in self.orders
        ]
        return result

    def status(self) -> Dict[str, Any]:
        return {
            'address': self.identity.address if self.identity else None,
            'public_key': self.identity.public_key if self.identity else None,
            'refreshing': self._refreshing,
            'stale': self.is_stale(),
            'last_refreshed': self.last_refreshed,
            'orders': len(self.orders),
            'catalogs': len(self.catalogs),
            'market_contract_address': self.market.address
        }

def build_session(settings: Dict[str, Any]) -> Session:
    """Wire a session to live explorer, node and contract clients."""
    fetcher = RateLimitedFetcher(interval_ms=settings['explorer_rate_limit_ms'])
    explorer = ExplorerClient(
        fetcher,
        settings['explorer_url'],
        settings['explorer_api_key'],
        chain_id=settings['chain_id']
    )
    market = MarketContract(
        EthereumRPC(settings['rpc_url']),
        settings['market_contract_address'],
        chain_id=settings['chain_id'],
        receipt_timeout=settings['receipt_timeout_seconds']
    )
    return Session(settings, explorer, market, StateStore(settings['state_path']))

__all__ = [
    'Session',
    'SessionError',
    'SessionState',
    'StateStore',
    'ErrorQueue',
    'OrderView',
    'OrderViews',
    'build_session'
]
