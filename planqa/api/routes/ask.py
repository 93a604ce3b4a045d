"""
Ask Route

POST /api/ask runs a question through the guarded pipeline. Stage failures
propagate as PipelineError and are mapped to HTTP responses in main.py.
"""

import logging

from fastapi import APIRouter, Header, HTTPException, status

from planqa.models.api import AskRequest, AskResponse
from planqa.models.permissions import PermissionContext
from planqa.pipeline import QueryPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_pipeline() -> QueryPipeline:
    from planqa.api.main import app_state

    pipeline = app_state.get("pipeline")
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Query pipeline is not available. Check the database and LLM configuration.",
        )
    return pipeline


@router.post("/ask", response_model=AskResponse, response_model_by_alias=True)
async def ask(
    request: AskRequest,
    x_user_id: str | None = Header(default=None),
    x_username: str | None = Header(default=None),
) -> AskResponse:
    """
    Answer a natural-language question.

    The caller is identified by ``userId``/``username`` in the body, falling
    back to the ``x-user-id``/``x-username`` headers.
    """
    pipeline = _get_pipeline()
    context = PermissionContext(
        user_id=request.user_id or x_user_id,
        username=request.username or x_username,
    )
    return await pipeline.ask(
        request.question,
        mode=request.mode,
        context=None if context.is_anonymous else context,
        filters=request.filters,
    )
