"""
Prometheus counters exposed under /metrics.
"""
from __future__ import annotations

from prometheus_client import Counter

VOTES_SUBMITTED = Counter(
    "serenity_votes_submitted_total",
    "Votes persisted by the voting engine",
    ["verdict", "shadow_banned"],
)

CONSENSUS_RECOMPUTED = Counter(
    "serenity_consensus_recomputed_total",
    "Consensus predictions appended after a vote",
    ["is_ai"],
)

RESOLUTIONS = Counter(
    "serenity_resolutions_total",
    "Classification resolutions by the tier that answered",
    ["tier"],
)

FAIL_OPEN = Counter(
    "serenity_fail_open_total",
    "Lookups that failed and degraded to unknown",
    ["tier"],
)
