"""
Stage 2: Start, continue or advance the session's flow.

Order of decisions:
1. While a step is active, its policy may replace the classification
   (e.g. an email typed during meeting_arrangement).
2. An intent that requires a flow starts it (or supersedes the active one).
   A flow started this turn is not advanced in the same turn.
3. Otherwise the active flow is checked for continuation (max duration) and
   its step policy decides whether the message completes the step.
"""

from typing import TYPE_CHECKING

import structlog

from ..base import TurnStage
from avatar_engine.services.flow_engine import FlowEngine
from avatar_engine.services.step_policies import StepCheck, StepPolicyRegistry

log = structlog.get_logger(__name__)

if TYPE_CHECKING:
    from ..context import TurnContext


class FlowResolutionStage(TurnStage):
    """Drive the flow engine for this turn."""

    def __init__(self, flow_engine: FlowEngine, policies: StepPolicyRegistry):
        self.flow_engine = flow_engine
        self.policies = policies

    async def process(self, context: "TurnContext") -> "TurnContext":
        session_id = context.session_id
        active = await self.flow_engine.get_active_flow(session_id)

        if active is not None:
            step = self.flow_engine.get_current_step(active)
            flow = self.flow_engine.get_flow_definition(active.avatar, active.flow_id)
            policy = self.policies.resolve(flow, step)
            override = policy.override_intent(context.user_message, context.classification)
            if override is not None:
                log.info(
                    "intent_overridden_by_step",
                    session_id=session_id,
                    step_id=step.id,
                    original_intent=context.classification.intent,
                    intent=override.intent,
                )
                context.classification = override

        classification = context.classification

        if classification.requires_flow:
            started = await self.flow_engine.start_flow(
                session_id, classification.intent, context.avatar, context.user_message
            )
            if started is not None and (active is None or started.id != active.id):
                context.active_flow = started
                context.flow_started = True
                return context

        current = await self.flow_engine.get_active_flow(session_id)
        if current is None:
            context.active_flow = None
            return context

        context.active_flow = current
        if not await self.flow_engine.should_continue_flow(session_id, classification.intent):
            return context

        flow = self.flow_engine.get_flow_definition(current.avatar, current.flow_id)
        step = self.flow_engine.get_current_step(current)
        decision = self.policies.resolve(flow, step).should_advance(
            StepCheck(
                message=context.user_message,
                intent=classification.intent,
                execution=current,
                flow=flow,
                step=step,
            )
        )
        log.debug(
            "step_decision",
            session_id=session_id,
            flow_id=flow.id,
            step_id=step.id,
            advance=decision.advance,
            reason=decision.reason,
        )

        if decision.advance:
            await self.flow_engine.progress_flow(
                session_id,
                context.user_message,
                completed_step_id=step.id,
                context_updates=decision.context_updates,
            )
            context.flow_progressed = True

        return context
