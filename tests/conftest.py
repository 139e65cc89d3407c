"""
Shared test fixtures.

Provides a controllable clock, a temporary database, a temporary YAML
definition set and the core services wired against them.
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import yaml

from avatar_engine.core.definition_loader import DefinitionCatalog
from avatar_engine.domain.models.avatar import CustomAvatar, StandardAvatar
from avatar_engine.persistence.database import init_database
from avatar_engine.persistence.repositories import (
    FlowExecutionRepository,
    MindStateRepository,
)
from avatar_engine.services.flow_engine import FlowEngine
from avatar_engine.services.memory_service import MemoryService


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# =============================================================================
# Definition set used by most unit tests
# =============================================================================

INTENTS = {
    "knowledge_intents": ["general_questions", "pricing_question"],
    "intents": [
        {"name": "email_provided", "keywords": ["@"]},
        {"name": "email_promise", "keywords": ["i'll send"]},
        {"name": "greeting", "keywords": ["hello"], "repeatable": False},
        {
            "name": "start",
            "description": "Begin the scripted exchange",
            "keywords": ["start"],
            "requires_flow": True,
            "flow_name": "f1",
        },
        {
            "name": "arrange_meeting",
            "keywords": ["meeting"],
            "requires_flow": True,
            "flow_name": "redirect",
        },
        {"name": "greeting_flow", "keywords": ["tour"], "requires_flow": True},
        {
            "name": "pricing_question",
            "description": "Questions about price",
            "keywords": ["price"],
            "examples": ["How much does it cost?"],
        },
        {"name": "discount_offer", "keywords": ["discount"], "max_age": 60},
        {"name": "vip_request", "keywords": ["vip"], "confidence_threshold": 0.95},
        {"name": "general_questions"},
        {"name": "user_comments"},
    ],
}

FLOWS = {
    "flows": [
        {
            "id": "f1",
            "name": "Scripted",
            "entry_intents": ["start"],
            "success_criteria": ["s1", "s2"],
            "steps": [
                {"id": "s1", "next_steps": ["s2"]},
                {"id": "s2", "next_steps": ["completed"]},
            ],
        },
        {
            "id": "redirect",
            "name": "Conversation redirect",
            "entry_intents": ["arrange_meeting"],
            "priority": 10,
            "repeatable": False,
            "steps": [
                {
                    "id": "meeting_arrangement",
                    "next_steps": ["meeting_confirmation"],
                    "completion_rule": "email_capture",
                },
                {
                    "id": "meeting_confirmation",
                    "next_steps": ["completed"],
                    "completion_rule": "always",
                },
            ],
        },
        {
            "id": "tour_low",
            "entry_intents": ["greeting_flow"],
            "priority": 1,
            "steps": [{"id": "t1", "next_steps": ["completed"]}],
        },
        {
            "id": "tour_high",
            "entry_intents": ["greeting_flow"],
            "priority": 5,
            "steps": [{"id": "t1", "next_steps": ["completed"]}],
        },
    ]
}

AVATAR_TEMPLATES = {
    "templates": [
        {
            "id": "confirm_step",
            "intent": "meeting_confirmation",
            "system_prompt": "Confirm the invite goes to {{extracted_email}}.",
        },
        {
            "id": "pricing_low",
            "intent": "pricing_question",
            "system_prompt": "Low priority pricing.",
            "priority": 1,
        },
        {
            "id": "pricing_high",
            "intent": "pricing_question",
            "system_prompt": "Quote prices for {{company.name}} in {{counterpart.industry}}.",
            "user_prompt_template": "Question: {{user_message}}",
            "variables": ["company.name", "discount_code"],
            "priority": 5,
        },
    ]
}

PERSONA = {
    "first_name": "Alex",
    "tone": "warm",
    "company": {"name": "Northbridge", "industry": "consulting", "offerings": ["audits", "workshops"]},
    "suggested_topics": ["growth"],
}

STANDARD_TEMPLATES = {
    "templates": [
        {
            "id": "system_prompt_default",
            "intent": "system",
            "system_prompt": "You are {{avatar.first_name}} from {{company.name}}.",
        },
        {"id": "general_questions", "intent": "general_questions", "system_prompt": "Answer briefly."},
        {"id": "user_comments", "intent": "user_comments", "system_prompt": "React to the remark."},
        {"id": "greeting", "intent": "greeting", "system_prompt": "Greet the user."},
        {"id": "start", "intent": "start", "system_prompt": "Begin. {{memory_short}}"},
        {"id": "arrange_meeting", "intent": "arrange_meeting", "system_prompt": "Ask for an email."},
        {"id": "email_provided", "intent": "email_provided", "system_prompt": "Thank them."},
        {"id": "email_promise", "intent": "email_promise", "system_prompt": "Wait for it."},
        {"id": "discount_offer", "intent": "discount_offer", "system_prompt": "Offer a discount."},
        {"id": "greeting_flow", "intent": "greeting_flow", "system_prompt": "Give a tour."},
        {"id": "vip_request", "intent": "vip_request", "system_prompt": "VIP."},
        {
            "id": "pricing_question_standard",
            "intent": "pricing_question",
            "system_prompt": "Standard pricing.",
            "priority": 100,
        },
    ]
}

CUSTOM_INTENTS = {
    "intents": [
        {
            "name": "greeting",
            "keywords": ["hello"],
            "repeatable": True,
            "system_prompt_template": "Custom hello from {{company.name}}.",
            "user_prompt_template": "Visitor: {{user_message}}",
        },
        {"name": "job_opening", "keywords": ["vacancy"]},
    ]
}

CUSTOM_FLOWS = {
    "flows": [
        {
            "id": "f1",
            "name": "Custom scripted",
            "entry_intents": ["start"],
            "steps": [{"id": "only", "next_steps": ["completed"]}],
        }
    ]
}


def _dump(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False))


def write_definitions(root: Path) -> Path:
    """Write the test definition set under ``root`` and return it."""
    avatar_dir = root / "avatars" / "networker"
    _dump(avatar_dir / "intents.yaml", INTENTS)
    _dump(avatar_dir / "flows.yaml", FLOWS)
    _dump(avatar_dir / "templates.yaml", AVATAR_TEMPLATES)
    _dump(avatar_dir / "persona.yaml", PERSONA)
    _dump(root / "prompts" / "templates.yaml", STANDARD_TEMPLATES)
    custom_dir = root / "custom_avatars" / "acme"
    _dump(custom_dir / "intents.yaml", CUSTOM_INTENTS)
    _dump(custom_dir / "flows.yaml", CUSTOM_FLOWS)
    _dump(custom_dir / "persona.yaml", {"first_name": "Maya", "company": {"name": "Acme"}})
    return root


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config_dir(tmp_path):
    return write_definitions(tmp_path / "config")


@pytest.fixture
def catalog(config_dir):
    return DefinitionCatalog(config_dir)


@pytest.fixture
def avatar():
    return StandardAvatar(avatar_type="networker")


@pytest.fixture
def custom_avatar():
    return CustomAvatar(avatar_id="acme", avatar_type="networker")


@pytest.fixture
async def test_db():
    """Create and initialize test database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        await init_database(db_path)
        yield db_path


@pytest.fixture
def mind_repo(test_db):
    return MindStateRepository(str(test_db))


@pytest.fixture
def flow_repo(test_db):
    return FlowExecutionRepository(str(test_db))


@pytest.fixture
def memory(mind_repo, clock):
    return MemoryService(
        mind_repo,
        clock=clock,
        stack_retention_seconds=3600,
        continuation_window_seconds=30,
    )


@pytest.fixture
def flow_engine(catalog, memory, flow_repo, clock):
    return FlowEngine(catalog, memory, flow_repo, clock=clock, idle_timeout_seconds=1800)
