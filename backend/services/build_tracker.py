"""
Build lifecycle tracking.

Status changes are applied with a compare-and-set UPDATE on the observed
status, so a re-delivered or concurrent report of the same transition is
applied exactly once. The first move into success bumps the owner's
active-project counter in the same transaction.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.clients.mailer import Mailer
from backend.errors import ConflictError, NotFoundError
from backend.models import BuildTestResults
from backend.models_db import Account, Build, Idea
from backend.services.accounts import utcnow
from backend.services.notifications import deliver
from forge.lifecycle import (
    BuildStatus,
    IdeaStatus,
    InvalidTransition,
    TransitionOutcome,
    advance_idea_status,
    check_build_transition,
    idea_status_after_success,
    is_terminal,
)
from forge.quota import as_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildNotification:
    email: str
    idea_title: str
    status: BuildStatus
    url: Optional[str]


@dataclass(frozen=True)
class BuildTransition:
    build_id: str
    status: BuildStatus
    outcome: TransitionOutcome
    account_id: Optional[str] = None
    idea_id: Optional[str] = None
    notification: Optional[BuildNotification] = None


def _load_build(db: Session, build_id: str) -> Build:
    build = db.get(Build, build_id, populate_existing=True)
    if build is None:
        raise NotFoundError("Build not found")
    return build


def _record_success(db: Session, build: Build, url: Optional[str], production_url: Optional[str], now: datetime) -> None:
    """Apply the account and idea side of a first successful build."""
    idea = db.get(Idea, build.idea_id)
    if idea is not None:
        target = idea_status_after_success(production_url)
        idea.status = advance_idea_status(IdeaStatus(idea.status), target).value
        idea.staging_url = build.staging_url or idea.staging_url
        idea.production_url = production_url or idea.production_url
    else:
        logger.warning("Build %s references missing idea %s", build.id, build.idea_id)

    if not build.account_id:
        logger.warning("Build %s has no owning account; active-project count not updated", build.id)
        return
    result = db.execute(
        update(Account)
        .where(Account.id == build.account_id)
        .values(
            active_projects=Account.active_projects + 1,
            latest_project_url=url,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning("Build %s owner %s not found; active-project count not updated", build.id, build.account_id)


def _notification_for(db: Session, build: Build, status: BuildStatus, url: Optional[str]) -> Optional[BuildNotification]:
    if not build.account_id:
        logger.warning("Build %s has no owning account; completion email skipped", build.id)
        return None
    account = db.get(Account, build.account_id)
    if account is None:
        logger.warning("Build %s owner %s not found; completion email skipped", build.id, build.account_id)
        return None
    return BuildNotification(email=account.email, idea_title=build.idea_title, status=status, url=url)


def advance_build(
    db: Session,
    build_id: str,
    target: BuildStatus,
    *,
    staging_url: Optional[str] = None,
    production_url: Optional[str] = None,
    test_results: Optional[BuildTestResults] = None,
    github_run_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BuildTransition:
    """Move a build to ``target`` and apply the side effects of that move.

    Commits on success. Completion emails are not sent here; dispatch the
    returned notification with ``notify_build_complete`` after the commit.

    Raises:
        NotFoundError: If the build does not exist.
        ConflictError: If the move is backwards, leaves a terminal state, or
            lost a race to a different status.
    """
    now = now or utcnow()
    target = BuildStatus(target)
    build = _load_build(db, build_id)
    observed = BuildStatus(build.status)

    try:
        outcome = check_build_transition(observed, target)
    except InvalidTransition as e:
        raise ConflictError(str(e))
    if outcome == TransitionOutcome.DUPLICATE:
        logger.info("Build %s already %s; duplicate report ignored", build_id, target.value)
        return BuildTransition(build_id, target, outcome, build.account_id, build.idea_id)

    values = {"status": target.value, "updated_at": now}
    if staging_url:
        values["staging_url"] = staging_url
    if production_url:
        values["production_url"] = production_url
    if test_results is not None:
        values["test_results_json"] = test_results.model_dump_json()
    if github_run_id:
        values["github_run_id"] = github_run_id
    if is_terminal(target):
        values["completed_at"] = now
        values["duration_seconds"] = max(0.0, (as_utc(now) - as_utc(build.started_at)).total_seconds())

    result = db.execute(
        update(Build)
        .where(Build.id == build_id, Build.status == observed.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        current = BuildStatus(_load_build(db, build_id).status)
        if current == target:
            return BuildTransition(build_id, target, TransitionOutcome.DUPLICATE, build.account_id, build.idea_id)
        raise ConflictError(f"Build {build_id} changed to '{current.value}' concurrently. Please retry.")

    build = _load_build(db, build_id)
    url = build.staging_url or build.production_url
    notification = None
    if target == BuildStatus.SUCCESS:
        _record_success(db, build, url, build.production_url, now)
    if is_terminal(target):
        notification = _notification_for(db, build, target, url)
        logger.info("Build %s completed with status: %s", build_id, target.value)
    db.commit()

    return BuildTransition(build_id, target, TransitionOutcome.APPLIED, build.account_id, build.idea_id, notification)


async def notify_build_complete(mailer: Mailer, transition: BuildTransition) -> bool:
    note = transition.notification
    if note is None:
        return False
    return await deliver(
        "build-complete", mailer.send_build_complete,
        note.email, note.idea_title, note.status.value, note.url,
    )


def build_test_results(build: Build) -> Optional[BuildTestResults]:
    if not build.test_results_json:
        return None
    return BuildTestResults(**json.loads(build.test_results_json))
