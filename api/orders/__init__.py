"""Orders API endpoints."""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from session import Session, OrderView

from ..dependencies import get_session, require_identity, to_http_error

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/orders",
    tags=["Orders"]
)

class FulfillRequest(BaseModel):
    """Request model for replying to an order."""
    tracking_url: str = ''
    message: str = ''

def order_json(view: OrderView) -> Dict[str, Any]:
    """Order fields plus decimal payment amounts and the price check."""
    order = view.order
    check = view.price_check
    data = order.model_dump(mode='json')
    data['fulfilled'] = order.fulfilled
    data['order_time'] = order.order_time()
    data['payment_amounts'] = {symbol: str(amount) for symbol, amount in order.payment.amounts().items()}
    data['price_check'] = {
        'expected': str(check.expected) if check.expected is not None else None,
        'received': str(check.received),
        'difference': str(check.difference) if check.difference is not None else None,
        'status': check.status
    }
    if order.shipping_address is not None:
        data['shipping_label'] = order.shipping_address.label()
    return data

@router.get("")
async def list_orders(fulfilled: Optional[bool] = None, session: Session = Depends(get_session)):
    """Orders newest first, split into unfulfilled and fulfilled."""
    views = session.order_views()
    result = {
        'unfulfilled': [order_json(view) for view in views.unfulfilled],
        'fulfilled': [order_json(view) for view in views.fulfilled]
    }
    if fulfilled is True:
        return {'fulfilled': result['fulfilled']}
    if fulfilled is False:
        return {'unfulfilled': result['unfulfilled']}
    return result

@router.get("/{trx_hash}")
async def get_order(trx_hash: str, session: Session = Depends(get_session)):
    """Get one order by transaction hash."""
    order = session.find_order(trx_hash)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Order {trx_hash} not found"
        )
    return order_json(OrderView(order=order, price_check=session.price_check(order)))

@router.post("/{trx_hash}/fulfill/estimate")
async def estimate_fulfillment(trx_hash: str, request: FulfillRequest,
                               session: Session = Depends(get_session)):
    """Gas cost of replying to an order."""
    require_identity(session)
    try:
        estimate = await session.estimate_fulfillment(trx_hash, request.tracking_url, request.message)
    except Exception as e:
        raise to_http_error(e)
    return {
        'gas': estimate.gas,
        'gas_price': estimate.gas_price,
        'cost_wei': estimate.cost_wei,
        'cost_eth': str(estimate.cost_eth)
    }

@router.post("/{trx_hash}/fulfill")
async def fulfill_order(trx_hash: str, request: FulfillRequest,
                        session: Session = Depends(get_session)):
    """Send the encrypted fulfillment reply for an order."""
    require_identity(session)
    try:
        result = await session.fulfill_order(trx_hash, request.tracking_url, request.message)
    except Exception as e:
        logger.error(f"Failed to fulfill order {trx_hash}: {e}")
        raise to_http_error(e)
    return result.model_dump()
