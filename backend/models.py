"""Pydantic models for InnovaForge API requests and responses."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from forge.lifecycle import BuildStatus, DeploymentTarget, IdeaStatus
from forge.plans import PlanKey
from forge.quota import Action


# --- Usage & Limits ---

class UsageSnapshot(BaseModel):
    ideas_generated: int = Field(0, ge=0)
    builds_started: int = Field(0, ge=0)
    active_projects: int = Field(0, ge=0)
    storage_used: int = Field(0, ge=0)
    bandwidth_used: int = Field(0, ge=0)


class LimitsSnapshot(BaseModel):
    """Plan quotas; -1 means unlimited."""
    ideas_per_month: int
    builds_per_month: int
    max_active_projects: int
    storage_limit: int = Field(..., description="GB")
    bandwidth_limit: int = Field(..., description="GB")
    seats: int


class CheckLimitsRequest(BaseModel):
    action: Action
    account_id: Optional[str] = Field(None, description="Admins only; defaults to the caller")


class CheckLimitsResponse(BaseModel):
    can_proceed: bool
    reason: str = ""
    usage: UsageSnapshot
    limits: LimitsSnapshot
    plan: PlanKey


# --- Accounts ---

class AccountResponse(BaseModel):
    id: str
    email: str
    name: str
    plan: PlanKey
    role: str
    status: str
    usage: UsageSnapshot
    limits: LimitsSnapshot
    subscription_status: Optional[str] = None
    latest_project_url: Optional[str] = None
    referral_code: Optional[str] = None
    is_new_user: bool = False


# --- Ideas ---

class GeneratedIdea(BaseModel):
    """Structured idea returned by the generative model."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    problem: str = ""
    solution: str = ""
    target_audience: str = ""
    tech_stack: list[str] = []
    features: list[str] = []
    monetization: str = ""
    market_size: str = ""
    competitors: list[str] = []
    score: float = Field(..., ge=0, le=100)


class IdeaResponse(GeneratedIdea):
    id: str
    account_id: str
    status: IdeaStatus
    staging_url: Optional[str] = None
    production_url: Optional[str] = None
    created_at: datetime


class GenerateIdeaRequest(BaseModel):
    focus: Optional[str] = Field(None, max_length=500, description="Optional topic hint")


class GenerateIdeaResponse(BaseModel):
    id: str
    idea: IdeaResponse


# --- Builds ---

class BuildTestResults(BaseModel):
    total: int = Field(..., ge=0)
    passed: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    coverage: float = Field(..., ge=0, le=100)


class StartBuildRequest(BaseModel):
    idea_id: str = Field(..., min_length=1)
    target: Optional[str] = Field(None, description="Vercel or Firebase Hosting; defaults to Vercel")


class StartBuildResponse(BaseModel):
    build_id: str
    status: BuildStatus
    deployment_target: DeploymentTarget


class BuildResponse(BaseModel):
    id: str
    idea_id: str
    idea_title: str
    status: BuildStatus
    deployment_target: DeploymentTarget
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    test_results: Optional[BuildTestResults] = None
    staging_url: Optional[str] = None
    production_url: Optional[str] = None
    github_run_id: Optional[str] = None


class BuildStatusUpdate(BaseModel):
    """Progress report posted by the build runner."""
    status: BuildStatus
    staging_url: Optional[str] = None
    production_url: Optional[str] = None
    test_results: Optional[BuildTestResults] = None
    github_run_id: Optional[str] = None


class BuildStatusUpdateResponse(BaseModel):
    build_id: str
    status: BuildStatus
    outcome: str


# --- Billing ---

class CheckoutRequest(BaseModel):
    plan: str = Field(..., min_length=1)


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None


# --- Admin ---

class AdminStats(BaseModel):
    total_users: int
    mrr: int
    ideas_generated: int
    builds_completed: int
    plan_breakdown: dict[str, int] = {}


class SuspendRequest(BaseModel):
    suspend: bool = True
