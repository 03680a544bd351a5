"""
InnovaForge Rules Engine

Plan catalogue, quota evaluation and build/idea state machines.

Everything here is pure and deterministic: no database, network or clock
access. The backend supplies the current time and persists the results.
"""

from forge.plans import PlanKey, PlanLimits, Plan, PriceCatalog, UNLIMITED, PAID_PLANS, get_plan, default_plan, parse_plan_key
from forge.quota import Action, Usage, LimitDecision, evaluate, needs_monthly_reset, month_window
from forge.lifecycle import BuildStatus, IdeaStatus, DeploymentTarget, InvalidTransition, TransitionOutcome, check_build_transition

__version__ = "0.1.0"
