"""
Prometheus counters for the broker flow, identity cache and event bus.
"""

from prometheus_client import Counter


flow_steps = Counter(
    "broker_flow_steps_total",
    "OAuth broker flow transitions",
    ["step", "outcome"],
)
identity_cache_lookups = Counter(
    "identity_cache_lookups_total",
    "Identity resolutions by cache outcome",
    ["result"],
)
subscriber_failures = Counter(
    "event_subscriber_failures_total",
    "Event subscribers that raised while handling an event",
    ["kind", "subscriber"],
)


def track_flow_step(step: str, success: bool):
    flow_steps.labels(step=step, outcome="success" if success else "failure").inc()
