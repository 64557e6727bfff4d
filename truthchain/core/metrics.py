"""Prometheus metrics for the notarization core."""

from prometheus_client import Counter, Histogram

VERIFICATIONS_TOTAL = Counter(
    "truthchain_verifications_total",
    "Verification requests by the step that answered them",
    labelnames=["source", "verified"],
)

CONTRACT_CALLS_TOTAL = Counter(
    "truthchain_contract_calls_total",
    "Calls made to the notarization contract",
    labelnames=["function", "outcome"],
)

CONTRACT_CALL_DURATION = Histogram(
    "truthchain_contract_call_duration_seconds",
    "Latency of contract calls",
    labelnames=["function"],
)

CACHE_EVENTS_TOTAL = Counter(
    "truthchain_verification_cache_events_total",
    "Verification cache lookups by result",
    labelnames=["event"],
)

BNS_VALIDATIONS_TOTAL = Counter(
    "truthchain_bns_validations_total",
    "BNS ownership checks by outcome",
    labelnames=["status"],
)

RATE_LIMITED_TOTAL = Counter(
    "truthchain_rate_limited_total",
    "Requests rejected by the rate limiter",
    labelnames=["tier"],
)
