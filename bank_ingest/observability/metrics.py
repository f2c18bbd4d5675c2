"""
Prometheus metrics for the bank statement ingestion service.
"""

from prometheus_client import Counter, Histogram


# ── Import Jobs ──────────────────────────────────────────────
import_jobs_processed_total = Counter(
    "import_jobs_processed_total",
    "Total import jobs settled, by terminal status",
    ["status", "tier"],
)

import_job_duration_seconds = Histogram(
    "import_job_duration_seconds",
    "Time to process an import job end-to-end",
    ["tier"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 900],
)

# ── Audit & Repair ───────────────────────────────────────────
pages_audited_total = Counter(
    "statement_pages_audited_total",
    "Statement pages audited, by final page status",
    ["status"],
)

vision_repairs_total = Counter(
    "vision_repairs_total",
    "Vision repair attempts, by outcome",
    ["outcome"],
)

# ── External AI calls ────────────────────────────────────────
external_api_latency_seconds = Histogram(
    "external_api_latency_seconds",
    "Latency of external AI calls",
    ["adapter", "operation"],
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 90],
)

external_api_failures_total = Counter(
    "external_api_failures_total",
    "Failed external AI calls, by error code",
    ["adapter", "operation", "error_code"],
)

# ── Deduplication ────────────────────────────────────────────
transactions_written_total = Counter(
    "bank_transactions_written_total",
    "Transaction candidates by dedup outcome",
    ["outcome"],
)

duplicate_resolutions_total = Counter(
    "duplicate_resolutions_total",
    "Resolved potential duplicates, by resolution",
    ["resolution"],
)
