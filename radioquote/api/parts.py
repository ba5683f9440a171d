"""
FastAPI router for the read-only parts catalog.

Key Endpoints:
- GET /parts - List catalog parts from parts_enhanced and parts
- GET /parts/{part_id} - Look up one part by id
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException

from radioquote.core.dependencies import StoreDep
from radioquote.core.errors import StoreError
from radioquote.models.schemas import Part

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[Part])
async def list_parts(store: StoreDep) -> List[Part]:
    """List every catalog part, ordered by category then name."""
    try:
        async with store.session() as session:
            return await session.list_parts()
    except StoreError as e:
        logger.error(f"Error listing parts: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load parts")


@router.get("/{part_id}", response_model=Part)
async def get_part(part_id: int, store: StoreDep) -> Part:
    try:
        async with store.session() as session:
            part = await session.get_part(part_id)
    except StoreError as e:
        logger.error(f"Error loading part {part_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load part")

    if part is None:
        raise HTTPException(status_code=404, detail=f"Part {part_id} not found")
    return part
