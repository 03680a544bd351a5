"""
Tests for idea generation.

Validates:
1. A generated idea is stored as pending, announced and emailed
2. The idea quota is charged on attempt, even when the model fails
3. An exhausted quota never reaches the model
4. Model replies are parsed leniently (code fences) but validated strictly
"""

import asyncio

import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(__file__))))

from backend.clients.idea_generator import IdeaGenerator, parse_generated_idea, strip_code_fences
from backend.errors import ConfigurationError, NotFoundError, QuotaExceededError, UpstreamError
from backend.models_db import Idea
from backend.services.accounts import get_account
from backend.services.ideas import generate_idea, get_idea, list_ideas

from conftest import NOW


def _generate(db, services, account_id, focus=None):
    return asyncio.run(generate_idea(
        db, services.generator, services.mailer, services.feed, account_id, focus=focus, now=NOW,
    ))


class TestGenerateIdea:
    """The generate-idea operation."""

    def test_stores_pending_idea(self, db, services, make_account, feed_events):
        account = make_account()
        idea = _generate(db, services, account.id, focus="restaurants")

        assert idea.title == "ShiftSwap"
        assert idea.status.value == "pending"
        assert idea.tech_stack == ["React", "FastAPI"]
        assert services.generator.calls == ["restaurants"]
        assert get_account(db, account.id).ideas_generated == 1
        assert [i.id for i in list_ideas(db, account.id)] == [idea.id]
        assert ("ideas", idea.id) in {(e.collection, e.doc_id) for e in feed_events}
        assert services.mailer.sent == [("idea-generated", account.email, "ShiftSwap")]

    def test_model_failure_still_charges(self, db, services, make_account):
        account = make_account()
        services.generator.error = UpstreamError("Idea generation timed out. Please try again.")
        with pytest.raises(UpstreamError):
            _generate(db, services, account.id)
        assert get_account(db, account.id).ideas_generated == 1
        assert db.query(Idea).count() == 0

    def test_exhausted_quota_skips_model(self, db, services, make_account):
        account = make_account(ideas_generated=5)
        with pytest.raises(QuotaExceededError):
            _generate(db, services, account.id)
        assert services.generator.calls == []
        assert get_account(db, account.id).ideas_generated == 5

    def test_email_failure_does_not_fail_generation(self, db, services, make_account):
        account = make_account()
        services.mailer.fail = True
        idea = _generate(db, services, account.id)
        assert idea.id
        assert services.mailer.sent == []

    def test_ideas_are_private(self, db, services, make_account):
        owner = make_account()
        other = make_account()
        idea = _generate(db, services, owner.id)
        assert get_idea(db, owner.id, idea.id).title == "ShiftSwap"
        with pytest.raises(NotFoundError):
            get_idea(db, other.id, idea.id)


class TestParseGeneratedIdea:
    """Parsing the model's JSON reply."""

    REPLY = (
        '{"title": "ShiftSwap", "description": "Trade shifts.", "tech_stack": ["React"],'
        ' "features": [], "competitors": [], "score": 78}'
    )

    def test_plain_json(self):
        idea = parse_generated_idea(self.REPLY)
        assert idea.title == "ShiftSwap"
        assert idea.score == pytest.approx(78)

    def test_fenced_json(self):
        idea = parse_generated_idea(f"```json\n{self.REPLY}\n```")
        assert idea.tech_stack == ["React"]

    def test_strip_code_fences_leaves_plain_text(self):
        assert strip_code_fences("  {}  ") == "{}"

    @pytest.mark.parametrize("reply", [
        "not json at all",
        "[1, 2, 3]",
        '{"title": "No description", "score": 50}',
        '{"title": "T", "description": "D", "score": 140}',
    ])
    def test_rejects_invalid(self, reply):
        with pytest.raises(UpstreamError):
            parse_generated_idea(reply)


class TestIdeaGeneratorConfig:
    """The real client refuses to run without credentials."""

    def test_missing_api_key(self):
        generator = IdeaGenerator(api_key=None, model="claude-test")
        with pytest.raises(ConfigurationError):
            asyncio.run(generator.generate())
