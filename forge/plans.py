"""
Subscription plan catalogue and price-id lookup.

Each plan key maps to exactly one set of quotas. External payment-provider
price ids are kept in a separate lookup table that feeds into the catalogue,
so an unrecognised price id resolves to the most restrictive plan instead of
an undefined value.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

# Sentinel for "no limit" on any quota
UNLIMITED = -1


class PlanKey(str, Enum):
    FREE = "free"
    FOUNDER = "founder"
    TEAM = "team"
    ENTERPRISE = "enterprise"


@dataclass(frozen=True)
class PlanLimits:
    """Per-plan quotas. Storage and bandwidth are in GB."""
    ideas_per_month: int
    builds_per_month: int
    max_active_projects: int
    storage_limit: int
    bandwidth_limit: int
    seats: int

    def as_dict(self) -> Dict[str, int]:
        return {
            'ideas_per_month': self.ideas_per_month,
            'builds_per_month': self.builds_per_month,
            'max_active_projects': self.max_active_projects,
            'storage_limit': self.storage_limit,
            'bandwidth_limit': self.bandwidth_limit,
            'seats': self.seats,
        }


@dataclass(frozen=True)
class Plan:
    key: PlanKey
    name: str
    monthly_price: int  # USD; enterprise is custom, nominal value for MRR
    limits: PlanLimits


FREE_LIMITS = PlanLimits(
    ideas_per_month=5,
    builds_per_month=2,
    max_active_projects=1,
    storage_limit=1,
    bandwidth_limit=5,
    seats=1,
)

FOUNDER_LIMITS = PlanLimits(
    ideas_per_month=50,
    builds_per_month=20,
    max_active_projects=5,
    storage_limit=10,
    bandwidth_limit=50,
    seats=1,
)

TEAM_LIMITS = PlanLimits(
    ideas_per_month=1000,
    builds_per_month=100,
    max_active_projects=20,
    storage_limit=50,
    bandwidth_limit=250,
    seats=5,
)

ENTERPRISE_LIMITS = PlanLimits(
    ideas_per_month=UNLIMITED,
    builds_per_month=UNLIMITED,
    max_active_projects=UNLIMITED,
    storage_limit=1000,
    bandwidth_limit=5000,
    seats=50,
)

PLANS: Dict[PlanKey, Plan] = {
    PlanKey.FREE: Plan(PlanKey.FREE, "Free", 0, FREE_LIMITS),
    PlanKey.FOUNDER: Plan(PlanKey.FOUNDER, "Founder", 49, FOUNDER_LIMITS),
    PlanKey.TEAM: Plan(PlanKey.TEAM, "Team", 99, TEAM_LIMITS),
    PlanKey.ENTERPRISE: Plan(PlanKey.ENTERPRISE, "Enterprise", 999, ENTERPRISE_LIMITS),
}

# Plans that can be bought through checkout
PAID_PLANS = frozenset({PlanKey.FOUNDER, PlanKey.TEAM, PlanKey.ENTERPRISE})


def parse_plan_key(value: str) -> PlanKey:
    """Convert a raw string to a PlanKey.

    Raises:
        ValueError: If the value is not one of the known plan keys.
    """
    try:
        return PlanKey(value)
    except ValueError:
        valid = ", ".join(k.value for k in PlanKey)
        raise ValueError(f"Unknown plan '{value}'. Valid plans: {valid}")


def get_plan(key) -> Plan:
    """Look up a plan by key (PlanKey or its string value)."""
    if not isinstance(key, PlanKey):
        key = parse_plan_key(key)
    return PLANS[key]


def default_plan() -> Plan:
    """The most restrictive plan, assigned at account creation."""
    return PLANS[PlanKey.FREE]


class PriceCatalog:
    """Maps payment-provider price ids to plan keys.

    Built from deployment configuration. Unknown price ids resolve to the
    free plan.
    """

    def __init__(self, prices: Mapping[PlanKey, Optional[str]]):
        self._plan_to_price: Dict[PlanKey, str] = {}
        self._price_to_plan: Dict[str, PlanKey] = {}
        for key, price_id in prices.items():
            if not price_id:
                continue
            key = key if isinstance(key, PlanKey) else parse_plan_key(key)
            if key not in PAID_PLANS:
                raise ValueError(f"Plan '{key.value}' cannot have a price id")
            if price_id in self._price_to_plan:
                raise ValueError(f"Price id '{price_id}' is mapped to more than one plan")
            self._plan_to_price[key] = price_id
            self._price_to_plan[price_id] = key

    def is_known(self, price_id: Optional[str]) -> bool:
        return bool(price_id) and price_id in self._price_to_plan

    def plan_for_price(self, price_id: Optional[str]) -> PlanKey:
        """Resolve a price id to its plan, failing closed to free."""
        if not price_id:
            return PlanKey.FREE
        return self._price_to_plan.get(price_id, PlanKey.FREE)

    def price_for_plan(self, key: PlanKey) -> Optional[str]:
        return self._plan_to_price.get(key)
