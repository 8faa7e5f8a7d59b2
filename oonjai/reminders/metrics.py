from prometheus_client import Counter


dispatcher_runs_total = Counter(
    "oonjai_dispatcher_runs_total",
    "Total dispatcher invocations",
    ["job"],
)

notifications_sent_total = Counter(
    "oonjai_notifications_sent_total",
    "Total occurrences delivered",
    ["job", "channel"],
)

notifications_failed_total = Counter(
    "oonjai_notifications_failed_total",
    "Total occurrences resolved as errors",
    ["job", "reason"],
)

notifications_skipped_total = Counter(
    "oonjai_notifications_skipped_total",
    "Total occurrences skipped",
    ["job", "reason"],
)

claim_conflicts_total = Counter(
    "oonjai_claim_conflicts_total",
    "Total claims lost to another invocation",
    ["job"],
)
