"""
Step-advancement policies.

A policy decides whether the user's message answers the active flow step,
and may rewrite the classified intent while that step is active. Policies
are selected by name: the step's ``completion_rule``, else the flow's
``completion_rule``, else ``"default"``.

Built-in policies:
    default          message is an answer, not a question (generic heuristic)
    detailed_answer  offer-related detail advances; otherwise default
    email_capture    advances only on a provided, valid email address
    always           always advances (confirmation / terminal steps)
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog

from avatar_engine.core.config import settings
from avatar_engine.core.exceptions import ConfigurationError
from avatar_engine.domain.models.definitions import FlowDefinition, FlowStep
from avatar_engine.domain.models.flow import FlowExecution
from avatar_engine.domain.models.intent import IntentClassificationResult

log = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

DOMAIN_KEYWORDS = re.compile(
    r"\b(need\w*|problem\w*|challenge\w*|difficult\w*|use|using|have|want\w*|plan\w*|looking)\b",
    re.IGNORECASE,
)

OFFER_KEYWORDS = re.compile(
    r"\b(offer\w*|we have|we can|speciali[sz]\w*|solution\w*|product\w*|service\w*"
    r"|price\w*|cost\w*|deadline\w*|terms)\b",
    re.IGNORECASE,
)

MIN_ANSWER_LENGTH = 10
MIN_DETAILED_LENGTH = 20


def extract_email(message: str) -> Optional[str]:
    match = EMAIL_PATTERN.search(message)
    return match.group(0) if match else None


@dataclass
class StepCheck:
    """Inputs of one advancement decision."""

    message: str
    intent: str
    execution: FlowExecution
    flow: FlowDefinition
    step: FlowStep


@dataclass
class StepDecision:
    """Outcome of one advancement decision."""

    advance: bool
    reason: str = ""
    context_updates: Dict[str, Any] = field(default_factory=dict)


class StepPolicy(ABC):
    """Named completion predicate for a flow step."""

    name: str = ""

    @abstractmethod
    def should_advance(self, check: StepCheck) -> StepDecision:
        """Whether ``check.message`` completes ``check.step``."""
        pass

    def override_intent(
        self, message: str, classification: IntentClassificationResult
    ) -> Optional[IntentClassificationResult]:
        """Replacement classification while this policy's step is active."""
        return None


class DefaultStepPolicy(StepPolicy):
    """The user answered rather than asked, with some substance."""

    name = "default"

    def should_advance(self, check: StepCheck) -> StepDecision:
        message = check.message.strip()
        if "?" in message:
            return StepDecision(False, "question")
        if len(message) <= MIN_ANSWER_LENGTH:
            return StepDecision(False, "too_short")

        if DOMAIN_KEYWORDS.search(message):
            return StepDecision(True, "provides_info")

        # Repeating the opening intent on the first step adds nothing new
        opening_intent = check.execution.context.get("intent")
        if check.intent != opening_intent or len(check.execution.step_executions) > 1:
            return StepDecision(True, "new_info")
        return StepDecision(False, "repeated_opening_intent")


class DetailedAnswerStepPolicy(StepPolicy):
    """Counterpart describes their offer in concrete terms."""

    name = "detailed_answer"

    def __init__(self, fallback: Optional[StepPolicy] = None):
        self.fallback = fallback or DefaultStepPolicy()

    def should_advance(self, check: StepCheck) -> StepDecision:
        message = check.message.strip()
        if (
            len(message) > MIN_DETAILED_LENGTH
            and "?" not in message
            and OFFER_KEYWORDS.search(message)
        ):
            return StepDecision(True, "detailed_answer")
        return self.fallback.should_advance(check)


class EmailCaptureStepPolicy(StepPolicy):
    """Advance only once a valid email address is actually provided."""

    name = "email_capture"

    def __init__(
        self,
        email_provided_intent: Optional[str] = None,
        email_promise_intent: Optional[str] = None,
    ):
        self.email_provided_intent = email_provided_intent or settings.email_provided_intent
        self.email_promise_intent = email_promise_intent or settings.email_promise_intent

    def should_advance(self, check: StepCheck) -> StepDecision:
        if check.intent == self.email_promise_intent:
            return StepDecision(False, "email_promised")

        email = extract_email(check.message)
        if email and check.intent == self.email_provided_intent:
            return StepDecision(True, "email_provided", {"extracted_email": email})
        return StepDecision(False, "no_valid_email")

    def override_intent(
        self, message: str, classification: IntentClassificationResult
    ) -> Optional[IntentClassificationResult]:
        email = extract_email(message)
        if not email:
            return None
        return IntentClassificationResult(
            intent=self.email_provided_intent,
            confidence=0.95,
            requires_flow=False,
            is_continuation=True,
            entities={"email": email},
            source="override",
        )


class AlwaysAdvanceStepPolicy(StepPolicy):
    name = "always"

    def should_advance(self, check: StepCheck) -> StepDecision:
        return StepDecision(True, "always")


class StepPolicyRegistry:
    """Name -> policy lookup with step/flow/default resolution."""

    DEFAULT = "default"

    def __init__(self):
        self._policies: Dict[str, StepPolicy] = {}

    @classmethod
    def with_builtins(cls) -> "StepPolicyRegistry":
        registry = cls()
        for policy in (
            DefaultStepPolicy(),
            DetailedAnswerStepPolicy(),
            EmailCaptureStepPolicy(),
            AlwaysAdvanceStepPolicy(),
        ):
            registry.register(policy)
        return registry

    def register(self, policy: StepPolicy, name: Optional[str] = None) -> None:
        self._policies[name or policy.name] = policy

    def get(self, name: str) -> StepPolicy:
        try:
            return self._policies[name]
        except KeyError:
            raise ConfigurationError(
                f"Unknown step completion rule '{name}'. "
                f"Registered: {', '.join(sorted(self._policies))}"
            ) from None

    def resolve(self, flow: FlowDefinition, step: FlowStep) -> StepPolicy:
        return self.get(step.completion_rule or flow.completion_rule or self.DEFAULT)
