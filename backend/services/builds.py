"""Starting builds and reading them back."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.errors import NotFoundError
from backend.models import BuildResponse
from backend.models_db import Build, Idea
from backend.realtime import ChangeFeed
from backend.services.accounts import utcnow
from backend.services.build_tracker import build_test_results
from backend.services.limit_checker import consume_quota
from forge.lifecycle import BuildStatus, IdeaStatus, advance_idea_status, resolve_deployment_target
from forge.quota import Action

logger = logging.getLogger(__name__)


def start_build(
    db: Session,
    feed: ChangeFeed,
    account_id: str,
    idea_id: str,
    target: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Build:
    """Create a queued build for one of the account's ideas.

    The quota increment, the idea status change and the build insert share
    one transaction: if any step fails nothing is charged.

    Raises:
        NotFoundError: Unknown idea, or an idea owned by someone else.
        QuotaExceededError: No builds left this month.
    """
    now = now or utcnow()
    deployment_target = resolve_deployment_target(target)
    try:
        idea = db.get(Idea, idea_id, populate_existing=True)
        if idea is None or idea.account_id != account_id:
            raise NotFoundError("Idea not found")

        consume_quota(db, account_id, Action.START_BUILD, now)

        idea.status = advance_idea_status(IdeaStatus(idea.status), IdeaStatus.BUILDING).value
        build = Build(
            id=str(uuid.uuid4()),
            idea_id=idea.id,
            account_id=account_id,
            idea_title=idea.title,
            status=BuildStatus.QUEUED.value,
            deployment_target=deployment_target.value,
            started_at=now,
            updated_at=now,
        )
        db.add(build)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Build %s queued for idea %s (%s)", build.id, idea_id, deployment_target.value)
    feed.publish("builds", build.id, account_id)
    feed.publish("ideas", idea_id, account_id)
    feed.publish("accounts", account_id, account_id)
    return build


def build_to_response(build: Build) -> BuildResponse:
    return BuildResponse(
        id=build.id,
        idea_id=build.idea_id,
        idea_title=build.idea_title,
        status=build.status,
        deployment_target=build.deployment_target,
        started_at=build.started_at,
        completed_at=build.completed_at,
        duration_seconds=build.duration_seconds,
        test_results=build_test_results(build),
        staging_url=build.staging_url,
        production_url=build.production_url,
        github_run_id=build.github_run_id,
    )


def list_builds(db: Session, account_id: str) -> list[Build]:
    return list(db.scalars(
        select(Build).where(Build.account_id == account_id).order_by(Build.started_at.desc())
    ))
