"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Usage metrics
swipes_recorded_total = Counter(
    "swipes_recorded_total",
    "Total chargeable swipes recorded",
    labelnames=["identity_kind"],  # email, ip_address
)

swipes_denied_total = Counter(
    "swipes_denied_total",
    "Total swipes refused by the limit policy",
    labelnames=["reason"],  # requires_upgrade, requires_sign_in
)

usage_resets_total = Counter(
    "usage_resets_total",
    "Total daily usage resets performed",
    labelnames=["identity_kind"],
)

# Merge metrics
merges_total = Counter(
    "usage_merges_total",
    "Total anonymous-to-account usage merges",
    labelnames=["source"],  # ip_record, client_declared, none
)

merge_partial_failures_total = Counter(
    "usage_merge_partial_failures_total",
    "Merges whose anonymous-record clear failed after the account write",
)

# Subscription metrics
subscription_transitions_total = Counter(
    "subscription_transitions_total",
    "Subscription state transitions applied",
    labelnames=["event", "target_state"],
)

checkout_sessions_created_total = Counter(
    "checkout_sessions_created_total",
    "Checkout sessions created with the payment provider",
)

# Webhook metrics
webhooks_received_total = Counter(
    "webhooks_received_total",
    "Payment provider webhook deliveries",
    labelnames=["event_type", "outcome"],  # applied, noop, unresolved, duplicate, ignored, failed
)
