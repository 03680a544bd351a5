"""
Build and idea status state machines.

Builds move forward along queued → running → testing → deploying and end in
exactly one of success or failed. Intermediate states may be skipped, but a
build never moves backwards and never leaves a terminal state. Ideas advance
pending → building → staging → deployed and never regress.
"""

from enum import Enum
from typing import Optional


class BuildStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    TESTING = "testing"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    FAILED = "failed"


class IdeaStatus(str, Enum):
    PENDING = "pending"
    BUILDING = "building"
    STAGING = "staging"
    DEPLOYED = "deployed"


class DeploymentTarget(str, Enum):
    VERCEL = "Vercel"
    FIREBASE_HOSTING = "Firebase Hosting"


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


class InvalidTransition(ValueError):
    """Raised when a status change would move a build backwards or out of a terminal state."""

    def __init__(self, current: BuildStatus, target: BuildStatus):
        super().__init__(f"Cannot move build from '{current.value}' to '{target.value}'")
        self.current = current
        self.target = target


_BUILD_RANK = {
    BuildStatus.QUEUED: 0,
    BuildStatus.RUNNING: 1,
    BuildStatus.TESTING: 2,
    BuildStatus.DEPLOYING: 3,
    BuildStatus.SUCCESS: 4,
    BuildStatus.FAILED: 4,
}

_IDEA_RANK = {
    IdeaStatus.PENDING: 0,
    IdeaStatus.BUILDING: 1,
    IdeaStatus.STAGING: 2,
    IdeaStatus.DEPLOYED: 3,
}

TERMINAL_STATUSES = frozenset({BuildStatus.SUCCESS, BuildStatus.FAILED})

DEFAULT_DEPLOYMENT_TARGET = DeploymentTarget.VERCEL


def is_terminal(status: BuildStatus) -> bool:
    return BuildStatus(status) in TERMINAL_STATUSES


def check_build_transition(current: BuildStatus, target: BuildStatus) -> TransitionOutcome:
    """Validate a build status change.

    Returns DUPLICATE when the build is already in ``target`` (a re-delivered
    event), APPLIED when the change moves strictly forward.

    Raises:
        InvalidTransition: For backward moves or moves out of a terminal state.
    """
    current = BuildStatus(current)
    target = BuildStatus(target)
    if current == target:
        return TransitionOutcome.DUPLICATE
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(current, target)
    if _BUILD_RANK[target] <= _BUILD_RANK[current]:
        raise InvalidTransition(current, target)
    return TransitionOutcome.APPLIED


def advance_idea_status(current: IdeaStatus, target: IdeaStatus) -> IdeaStatus:
    """Return whichever of the two statuses is further along."""
    current = IdeaStatus(current)
    target = IdeaStatus(target)
    return target if _IDEA_RANK[target] > _IDEA_RANK[current] else current


def idea_status_after_success(production_url: Optional[str]) -> IdeaStatus:
    """A successful build is live once it has a production URL, otherwise it is on staging."""
    if production_url:
        return IdeaStatus.DEPLOYED
    return IdeaStatus.STAGING


def resolve_deployment_target(value: Optional[str]) -> DeploymentTarget:
    """Map a requested target to a supported one, defaulting to Vercel."""
    for target in DeploymentTarget:
        if value == target.value:
            return target
    return DEFAULT_DEPLOYMENT_TARGET
