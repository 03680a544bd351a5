"""Build routes: starting builds, listing them, and runner status reports."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.auth import get_current_user, require_build_runner
from backend.dependencies import Services, get_db, get_services
from backend.models import BuildResponse, BuildStatusUpdate, BuildStatusUpdateResponse, StartBuildRequest, StartBuildResponse
from backend.models_db import Account
from backend.services.build_tracker import advance_build, notify_build_complete
from backend.services.builds import build_to_response, list_builds, start_build
from forge.lifecycle import TransitionOutcome

router = APIRouter()


@router.post("/builds/start", response_model=StartBuildResponse)
async def start(
    body: StartBuildRequest,
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Queue a build for one of the caller's ideas. Consumes one build from the monthly quota."""
    build = start_build(db, services.feed, current_user.id, body.idea_id, body.target)
    return StartBuildResponse(build_id=build.id, status=build.status, deployment_target=build.deployment_target)


@router.get("/builds", response_model=list[BuildResponse])
async def list_own_builds(
    current_user: Account = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return [build_to_response(b) for b in list_builds(db, current_user.id)]


@router.post(
    "/builds/{build_id}/status",
    response_model=BuildStatusUpdateResponse,
    dependencies=[Depends(require_build_runner)],
)
async def report_status(
    build_id: str,
    body: BuildStatusUpdate,
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Advance a build's state machine. Safe to re-deliver."""
    transition = advance_build(
        db,
        build_id,
        body.status,
        staging_url=body.staging_url,
        production_url=body.production_url,
        test_results=body.test_results,
        github_run_id=body.github_run_id,
    )
    if transition.outcome == TransitionOutcome.APPLIED:
        services.feed.publish("builds", build_id, transition.account_id)
        if transition.idea_id:
            services.feed.publish("ideas", transition.idea_id, transition.account_id)
        if transition.account_id:
            services.feed.publish("accounts", transition.account_id, transition.account_id)
        await notify_build_complete(services.mailer, transition)
    return BuildStatusUpdateResponse(build_id=build_id, status=transition.status, outcome=transition.outcome.value)
