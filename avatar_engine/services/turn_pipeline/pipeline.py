"""
Runs the turn stages in order and turns the final context into a TurnResult.

A failing stage aborts the turn: the error is logged with the stage name and
re-raised so the caller's exception handler decides the response.
"""

import time
from typing import List

import structlog

from .base import TurnStage
from .context import TurnContext
from .result import TurnResult

log = structlog.get_logger(__name__)


class TurnPipeline:
    """Sequential stage runner with per-stage timing."""

    def __init__(self, stages: List[TurnStage]):
        self.stages = stages

    async def execute(self, context: TurnContext) -> TurnResult:
        """
        Run every stage against ``context``.

        Returns:
            TurnResult built from the final context

        Raises:
            Exception: Whatever the failing stage raised
        """
        started = time.perf_counter()
        log.info(
            "pipeline_started",
            session_id=context.session_id,
            avatar=context.avatar.key,
            num_stages=len(self.stages),
        )

        for stage in self.stages:
            context = await self._run_stage(stage, context)

        latency_ms = int((time.perf_counter() - started) * 1000)
        log.info(
            "pipeline_completed",
            session_id=context.session_id,
            intent=context.classification.intent if context.classification else None,
            flow_id=context.active_flow.flow_id if context.active_flow else None,
            latency_ms=latency_ms,
            stage_timings=context.stage_timings,
        )
        return self._build_result(context, latency_ms)

    async def _run_stage(self, stage: TurnStage, context: TurnContext) -> TurnContext:
        name = stage.stage_name
        stage_started = time.perf_counter()
        try:
            context = await stage.process(context)
        except Exception as e:
            log.error(
                "stage_failed",
                stage_name=name,
                session_id=context.session_id,
                error=str(e),
                exc_info=True,
            )
            raise

        elapsed_ms = (time.perf_counter() - stage_started) * 1000
        context.stage_timings[name] = elapsed_ms
        log.debug("stage_completed", stage_name=name, duration_ms=round(elapsed_ms, 2))
        return context

    def _build_result(self, context: TurnContext, latency_ms: int) -> TurnResult:
        classification = context.classification
        prompt = context.prompt
        flow = context.active_flow

        return TurnResult(
            session_id=context.session_id,
            intent=classification.intent if classification else "",
            confidence=classification.confidence if classification else 0.0,
            is_continuation=classification.is_continuation if classification else False,
            system_prompt=prompt.system_prompt if prompt else "",
            user_prompt=prompt.user_prompt if prompt else "",
            template_id=prompt.template_id if prompt else "",
            flow_id=flow.flow_id if flow else None,
            flow_step=flow.current_step if flow and flow.is_active else None,
            flow_status=flow.status.value if flow else None,
            reply=context.reply,
            latency_ms=latency_ms,
            stage_timings=dict(context.stage_timings),
        )
