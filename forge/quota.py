"""
Quota evaluation for metered actions.

Pure functions only: given a usage snapshot and a plan's limits, decide
whether an action may proceed. Monthly counters are reset at the UTC
calendar-month boundary; the storage layer decides *how* to apply the
reset atomically, this module only decides *whether* one is due.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple

from forge.plans import UNLIMITED, PlanLimits


class Action(str, Enum):
    GENERATE_IDEA = "generate_idea"
    START_BUILD = "start_build"
    DEPLOY_PROJECT = "deploy_project"


@dataclass(frozen=True)
class Usage:
    ideas_generated: int = 0
    builds_started: int = 0
    active_projects: int = 0
    storage_used: int = 0
    bandwidth_used: int = 0

    def __post_init__(self):
        for name in ('ideas_generated', 'builds_started', 'active_projects',
                     'storage_used', 'bandwidth_used'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")


@dataclass(frozen=True)
class LimitDecision:
    can_proceed: bool
    used: int
    limit: int
    reason: str = ""


# action → (usage counter, limit field, noun used in denial messages, monthly?)
_ACTION_RULES = {
    Action.GENERATE_IDEA: ('ideas_generated', 'ideas_per_month', 'ideas', True),
    Action.START_BUILD: ('builds_started', 'builds_per_month', 'builds', True),
    Action.DEPLOY_PROJECT: ('active_projects', 'max_active_projects', 'active projects', False),
}

# Counters cleared by the monthly reset
MONTHLY_COUNTERS = ('ideas_generated', 'builds_started')


def as_utc(moment: datetime) -> datetime:
    """Interpret naive datetimes as UTC; convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def month_window(now: datetime) -> Tuple[datetime, datetime]:
    """Return (start of now's UTC month, start of the following month)."""
    now = as_utc(now)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def needs_monthly_reset(last_reset_at: Optional[datetime], now: datetime) -> bool:
    """True when the last reset happened in a different UTC month/year than now."""
    if last_reset_at is None:
        return True
    last = as_utc(last_reset_at)
    current = as_utc(now)
    return (last.year, last.month) != (current.year, current.month)


def counter_for(action: Action) -> str:
    return _ACTION_RULES[Action(action)][0]


def limit_field_for(action: Action) -> str:
    return _ACTION_RULES[Action(action)][1]


def limit_for(action: Action, limits: PlanLimits) -> int:
    return getattr(limits, limit_field_for(action))


def is_monthly(action: Action) -> bool:
    return _ACTION_RULES[Action(action)][3]


def is_unlimited(limit: int) -> bool:
    return limit == UNLIMITED


def evaluate(action: Action, usage: Usage, limits: PlanLimits) -> LimitDecision:
    """Decide whether ``action`` fits within ``limits`` given ``usage``.

    Unlimited quotas always allow. A finite quota allows only while the
    counter is strictly below the limit.
    """
    action = Action(action)
    counter, _, noun, monthly = _ACTION_RULES[action]
    used = getattr(usage, counter)
    limit = limit_for(action, limits)

    if is_unlimited(limit) or used < limit:
        return LimitDecision(can_proceed=True, used=used, limit=limit)

    period = " this month" if monthly else ""
    reason = f"You've used {used}/{limit} {noun}{period}. Upgrade for more."
    return LimitDecision(can_proceed=False, used=used, limit=limit, reason=reason)
