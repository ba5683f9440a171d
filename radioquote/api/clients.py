"""
FastAPI router for the client registry.

Clients are created implicitly by quote assembly (unique on name + industry);
this router only reads them.

Key Endpoints:
- GET /clients - List clients
- GET /clients/{client_id} - Look up one client
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException

from radioquote.core.dependencies import StoreDep
from radioquote.core.errors import ClientNotFound, StoreError
from radioquote.models.schemas import Client

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[Client])
async def list_clients(store: StoreDep) -> List[Client]:
    try:
        async with store.session() as session:
            return await session.list_clients()
    except StoreError as e:
        logger.error(f"Error listing clients: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load clients")


@router.get("/{client_id}", response_model=Client)
async def get_client(client_id: int, store: StoreDep) -> Client:
    try:
        async with store.session() as session:
            client = await session.get_client(client_id)
            if client is None:
                raise ClientNotFound(client_id)
            return client
    except ClientNotFound as e:
        logger.warning(str(e))
        raise HTTPException(status_code=404, detail=str(e))
    except StoreError as e:
        logger.error(f"Error loading client {client_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load client")
