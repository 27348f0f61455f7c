"""Catalog endpoints: loaded catalogs, past uploads and new uploads."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from catalogs import prepare_catalog_upload
from session import Session

from ..dependencies import get_session, require_identity, to_http_error

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/catalogs",
    tags=["Catalogs"]
)

class UploadRequest(BaseModel):
    """Catalog CSV text, header row first."""
    csv: str

@router.get("")
async def list_catalogs(session: Session = Depends(get_session)):
    """Catalogs loaded by the last refresh, oldest first."""
    return [catalog.model_dump(mode='json') for catalog in session.catalogs]

@router.get("/uploads")
async def list_uploads(session: Session = Depends(get_session)):
    identity = require_identity(session)
    try:
        uploads = await session.publisher.fetch_my_uploads(identity)
    except Exception as e:
        raise to_http_error(e)
    return [upload.model_dump() for upload in uploads]

@router.get("/uploads/{link}")
async def get_upload(link: str, session: Session = Depends(get_session)):
    """CSV text of an earlier upload."""
    try:
        text = await session.publisher.retrieve_catalog_text(link)
    except Exception as e:
        raise to_http_error(e)
    return {'link': link, 'csv': text}

@router.post("/upload/estimate")
async def estimate_upload(request: UploadRequest, session: Session = Depends(get_session)):
    identity = require_identity(session)
    try:
        payload = prepare_catalog_upload(request.csv)
        estimate = await session.publisher.estimate_upload_cost(identity, payload)
    except Exception as e:
        raise to_http_error(e)
    return {
        'size': len(payload),
        'gas': estimate.gas,
        'gas_price': estimate.gas_price,
        'cost_wei': estimate.cost_wei,
        'cost_eth': str(estimate.cost_eth)
    }

@router.post("/upload")
async def upload_catalog(request: UploadRequest, session: Session = Depends(get_session)):
    """Upload a catalog; it takes effect for orders placed after it is mined."""
    identity = require_identity(session)
    try:
        payload = prepare_catalog_upload(request.csv)
        result = await session.publisher.upload_products(identity, payload)
    except Exception as e:
        logger.error(f"Catalog upload failed: {e}")
        raise to_http_error(e)
    return result.model_dump()
