# apikey_core/tiers.py
"""
Closed tier enumeration and the quota policy attached to each tier.

The policy numbers are consumed by the downstream rate limiter; this package
only validates and stores the tier.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional, Dict, Any
from .errors import InvalidTier


class Tier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TierPolicy:
    requests_per_minute: int
    requests_per_day: Optional[int]  # None = unlimited
    tokens_per_day: Optional[int]
    max_concurrent: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


TIER_POLICIES: Dict[Tier, TierPolicy] = {
    Tier.FREE: TierPolicy(requests_per_minute=10, requests_per_day=100, tokens_per_day=10_000, max_concurrent=1),
    Tier.BASIC: TierPolicy(requests_per_minute=60, requests_per_day=1_000, tokens_per_day=100_000, max_concurrent=4),
    Tier.PRO: TierPolicy(requests_per_minute=300, requests_per_day=10_000, tokens_per_day=1_000_000, max_concurrent=16),
    Tier.ENTERPRISE: TierPolicy(requests_per_minute=1_000, requests_per_day=None, tokens_per_day=None, max_concurrent=64),
}


def parse_tier(value) -> Tier:
    """Resolve a tier name (case-insensitive) or raise InvalidTier."""
    if isinstance(value, Tier):
        return value
    if not isinstance(value, str):
        raise InvalidTier(value)
    try:
        return Tier(value.strip().lower())
    except ValueError:
        raise InvalidTier(value) from None


def is_valid_tier(value) -> bool:
    try:
        parse_tier(value)
        return True
    except InvalidTier:
        return False


def get_tier_policy(tier) -> TierPolicy:
    return TIER_POLICIES[parse_tier(tier)]
