"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge

# Job lifecycle metrics
jobs_submitted_total = Counter(
    "jobs_submitted_total",
    "Total generation jobs submitted",
    labelnames=["capability", "result"],  # result: dispatched, rejected, insufficient_funds
)

job_transitions_total = Counter(
    "job_transitions_total",
    "Total job status transitions",
    labelnames=["status"],
)

provider_query_errors_total = Counter(
    "provider_query_errors_total",
    "Total failed provider status queries",
)

# Artifact metrics
artifacts_materialized_total = Counter(
    "artifacts_materialized_total",
    "Total artifacts processed by the materializer",
    labelnames=["result"],  # stored, placeholder, repaired, unrecoverable
)

# Billing metrics
billing_charges_total = Counter(
    "billing_charges_total",
    "Total jobs charged",
    labelnames=["trigger"],  # webhook, poll, sweep
)

billing_amount_cents_total = Counter(
    "billing_amount_cents_total",
    "Total charged amount in cents",
)

billing_race_losses_total = Counter(
    "billing_race_losses_total",
    "Total reconciliations that found another trigger had already charged",
    labelnames=["trigger"],
)

billing_errors_total = Counter(
    "billing_errors_total",
    "Total reconciliation attempts that failed and were left for retry",
)

billing_inconsistencies_total = Counter(
    "billing_inconsistencies_total",
    "Total ledger inconsistencies detected",
    labelnames=["kind"],  # unapplied_transaction, balance_drift
)

balances_with_drift_gauge = Gauge(
    "balances_with_drift",
    "Number of balances that disagree with the ledger at the last audit",
)

# Sweep metrics
sweep_jobs_total = Counter(
    "sweep_jobs_total",
    "Total jobs visited by background sweeps",
    labelnames=["sweep", "result"],
)
