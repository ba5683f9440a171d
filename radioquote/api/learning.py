"""
FastAPI router for the learning engine.

Key Endpoints:
- GET /learning/insights/{industry}/{user_count} - Relevant patterns
- POST /learning/apply - Merge patterns into a recommendation
- POST /learning/feedback - Record satisfaction for a session
- POST /learning/flush - Persist accumulators with enough samples
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query

from radioquote.core.dependencies import LearningDep
from radioquote.models.schemas import (
    ApplyLearningRequest,
    FeedbackRequest,
    FeedbackSummary,
    FlushResult,
    LearningPattern,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/insights/{industry}/{user_count}", response_model=List[LearningPattern])
async def get_insights(
    industry: str,
    user_count: int,
    learning: LearningDep,
    request_type: Optional[str] = Query(default=None),
) -> List[LearningPattern]:
    """
    Patterns that apply to an industry and fleet size.

    Only patterns meeting the confidence and sample-size thresholds are
    returned, most confident first, at most 10.
    """
    try:
        return await learning.get_relevant_patterns(industry, user_count, request_type)
    except Exception as e:
        logger.error(f"Error loading insights for {industry}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to load learning insights")


@router.post("/apply", response_model=Dict[str, Any])
async def apply_learning(body: ApplyLearningRequest, learning: LearningDep) -> Dict[str, Any]:
    try:
        return await learning.apply_learning_to_recommendation(body.recommendation, body.context)
    except Exception as e:
        logger.error(f"Error applying learning: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to apply learning")


@router.post("/feedback", response_model=FeedbackSummary)
async def record_feedback(body: FeedbackRequest, learning: LearningDep) -> FeedbackSummary:
    try:
        summary = await learning.record_user_feedback(body)
    except Exception as e:
        logger.error(f"Error recording feedback for session {body.session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to record feedback")

    if summary is None:
        raise HTTPException(
            status_code=404,
            detail=f"No interaction found for session {body.session_id}",
        )
    return summary


@router.post("/flush", response_model=FlushResult)
async def flush_patterns(learning: LearningDep) -> FlushResult:
    try:
        stored = await learning.store_learning_patterns()
    except Exception as e:
        logger.error(f"Error flushing learning patterns: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to store learning patterns")
    return FlushResult(patterns_stored=stored)
