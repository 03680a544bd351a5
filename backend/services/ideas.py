"""Idea generation and retrieval."""

import json
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.clients.idea_generator import IdeaGenerator
from backend.clients.mailer import Mailer
from backend.errors import NotFoundError
from backend.models import IdeaResponse
from backend.models_db import Idea
from backend.realtime import ChangeFeed
from backend.services.accounts import get_account, utcnow
from backend.services.limit_checker import consume_quota
from backend.services.notifications import deliver
from forge.lifecycle import IdeaStatus
from forge.quota import Action

logger = logging.getLogger(__name__)


def idea_to_response(idea: Idea) -> IdeaResponse:
    return IdeaResponse(
        id=idea.id,
        account_id=idea.account_id,
        title=idea.title,
        description=idea.description,
        problem=idea.problem,
        solution=idea.solution,
        target_audience=idea.target_audience,
        tech_stack=json.loads(idea.tech_stack_json) if idea.tech_stack_json else [],
        features=json.loads(idea.features_json) if idea.features_json else [],
        monetization=idea.monetization,
        market_size=idea.market_size,
        competitors=json.loads(idea.competitors_json) if idea.competitors_json else [],
        score=idea.score,
        status=idea.status,
        staging_url=idea.staging_url,
        production_url=idea.production_url,
        created_at=idea.created_at,
    )


async def generate_idea(
    db: Session,
    generator: IdeaGenerator,
    mailer: Mailer,
    feed: ChangeFeed,
    account_id: str,
    focus: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IdeaResponse:
    """Generate, store and announce a new idea for the account.

    The quota is charged on attempt: the increment is committed before the
    model is called and is not refunded if the call fails.

    Raises:
        NotFoundError: Unknown account.
        QuotaExceededError: No ideas left this month.
        UpstreamError: The model failed, timed out or returned an invalid idea.
    """
    now = now or utcnow()
    try:
        consume_quota(db, account_id, Action.GENERATE_IDEA, now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    feed.publish("accounts", account_id, account_id)

    generated = await generator.generate(focus)

    idea = Idea(
        id=str(uuid.uuid4()),
        account_id=account_id,
        title=generated.title,
        description=generated.description,
        problem=generated.problem,
        solution=generated.solution,
        target_audience=generated.target_audience,
        tech_stack_json=json.dumps(generated.tech_stack),
        features_json=json.dumps(generated.features),
        monetization=generated.monetization,
        market_size=generated.market_size,
        competitors_json=json.dumps(generated.competitors),
        score=generated.score,
        status=IdeaStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    db.add(idea)
    db.commit()
    db.refresh(idea)
    logger.info("Idea %s generated for account %s", idea.id, account_id)
    feed.publish("ideas", idea.id, account_id)

    account = get_account(db, account_id)
    await deliver("idea-generated", mailer.send_idea_generated, account.email, idea.title, idea.description)
    return idea_to_response(idea)


def list_ideas(db: Session, account_id: str) -> list[Idea]:
    return list(db.scalars(
        select(Idea).where(Idea.account_id == account_id).order_by(Idea.created_at.desc())
    ))


def get_idea(db: Session, account_id: str, idea_id: str) -> Idea:
    idea = db.get(Idea, idea_id)
    if idea is None or idea.account_id != account_id:
        raise NotFoundError("Idea not found")
    return idea
