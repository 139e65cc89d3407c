"""
Session API routes.

Endpoints for message handling, memory inspection and flow control.
"""

from fastapi import APIRouter
import structlog

from avatar_engine.api.dependencies import AvatarServiceDep
from avatar_engine.api.schemas import (
    FlowStateSchema,
    FlowStatusResponse,
    MessageRequest,
    MessageResponse,
)
from avatar_engine.core.config import settings
from avatar_engine.domain.models.avatar import StandardAvatar
from avatar_engine.domain.models.flow import FlowExecution
from avatar_engine.domain.models.memory import MindStateStack

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/{session_id}/messages", response_model=MessageResponse)
async def post_message(
    session_id: str,
    request: MessageRequest,
    service: AvatarServiceDep,
):
    """Handle one user message and return the prompts (and reply, if generated).

    Classifies the message, starts or advances the session's flow, updates
    memory and assembles the prompts for the avatar's reply.
    """
    avatar = request.avatar or StandardAvatar(avatar_type=settings.default_avatar_type)

    result = await service.process_message(
        session_id=session_id,
        user_message=request.text,
        avatar=avatar,
        chat_history_text=request.chat_history,
        session_context=request.session_context,
        counterpart=request.counterpart,
    )

    flow = None
    if result.flow_id is not None:
        flow = FlowStateSchema(
            flow_id=result.flow_id,
            step=result.flow_step,
            status=result.flow_status,
        )

    return MessageResponse(
        session_id=result.session_id,
        intent=result.intent,
        confidence=result.confidence,
        is_continuation=result.is_continuation,
        flow=flow,
        template_id=result.template_id,
        system_prompt=result.system_prompt,
        user_prompt=result.user_prompt,
        reply=result.reply,
        latency_ms=result.latency_ms,
        stage_timings=result.stage_timings,
    )


@router.get("/{session_id}/memory", response_model=MindStateStack)
async def get_memory(session_id: str, service: AvatarServiceDep):
    """Return the session's MindStateStack (created empty on first access)."""
    return await service.get_memory(session_id)


@router.post("/{session_id}/memory/reset", response_model=MindStateStack)
async def reset_memory(session_id: str, service: AvatarServiceDep):
    """Cancel the active flow and clear the session's memory."""
    state = await service.reset_session(session_id)
    log.info("session_reset_via_api", session_id=session_id)
    return state


@router.get("/{session_id}/flows", response_model=FlowStatusResponse)
async def get_flows(session_id: str, service: AvatarServiceDep):
    """Active flow with progress, plus every flow the session has run."""
    status = await service.get_flow_status(session_id)
    return FlowStatusResponse(session_id=session_id, **status)


@router.delete("/{session_id}/flow", response_model=FlowExecution)
async def cancel_flow(session_id: str, service: AvatarServiceDep):
    """Cancel the session's active flow (404 without one)."""
    return await service.cancel_flow(session_id)
