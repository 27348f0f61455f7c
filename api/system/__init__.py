"""Session status, refresh, error queue and identity endpoints."""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from identity import IdentityError
from session import Session

from ..dependencies import get_session, to_http_error

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

class IdentityRequest(BaseModel):
    """Request model for setting the seller key."""
    private_key: str

class IdentityResponse(BaseModel):
    address: Optional[str] = None
    public_key: Optional[str] = None

class RefreshResponse(BaseModel):
    refreshed: bool
    last_refreshed: Optional[float] = None

@router.get("/status")
async def get_status(session: Session = Depends(get_session)) -> Dict[str, Any]:
    """Identity, refresh state and data counts."""
    return session.status()

@router.post("/refresh", response_model=RefreshResponse)
async def refresh(session: Session = Depends(get_session)):
    """Refresh orders and catalogs now (dropped if one is already running)."""
    try:
        refreshed = await session.refresh()
    except Exception as e:
        raise to_http_error(e)
    return RefreshResponse(refreshed=refreshed, last_refreshed=session.last_refreshed)

@router.get("/errors")
async def get_errors(session: Session = Depends(get_session)) -> List[str]:
    """Errors raised in the last few seconds."""
    return session.errors.active()

@router.post("/identity", response_model=IdentityResponse)
async def set_identity(request: IdentityRequest, session: Session = Depends(get_session)):
    """Set the seller private key; an empty key logs out."""
    try:
        identity = await session.set_private_key(request.private_key)
    except IdentityError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        raise to_http_error(e)
    if identity is None:
        return IdentityResponse()
    return IdentityResponse(address=identity.address, public_key=identity.public_key)

@router.delete("/identity", status_code=status.HTTP_204_NO_CONTENT)
async def clear_identity(session: Session = Depends(get_session)):
    """Forget the key and all loaded data."""
    await session.logout()
