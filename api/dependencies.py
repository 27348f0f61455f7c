"""Shared dependencies and error translation for the API routers."""

from fastapi import HTTPException, Request, status

from catalogs import CatalogParseError
from explorer import ExplorerError
from identity import IdentityError
from market import MarketError
from orders import OrderError
from rpc import RPCError
from session import Session, SessionError

def get_session(request: Request) -> Session:
    """The session created by the app lifespan."""
    return request.app.state.session

def require_identity(session: Session):
    try:
        return session.require_identity()
    except SessionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

def to_http_error(e: Exception) -> HTTPException:
    """Map a domain error to the response the operator sees."""
    if isinstance(e, (IdentityError, OrderError, CatalogParseError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, SessionError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, (RPCError, ExplorerError, MarketError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
