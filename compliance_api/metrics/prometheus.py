"""Métricas Prometheus del motor de cumplimiento.

Todas las métricas viven en el registry por defecto; el endpoint
GET /metrics las expone con generate_latest().
"""

from prometheus_client import Counter, Gauge, Histogram

SOURCE_REQUESTS = Counter(
    "compliance_source_requests_total",
    "Source page requests by outcome",
    ["source", "outcome"],  # ok, transient, rate_limited, permanent, degraded, budget
)
SOURCE_RETRIES = Counter(
    "compliance_source_retries_total",
    "Retries scheduled by the backoff controller",
    ["source"],
)
CIRCUIT_STATE = Gauge(
    "compliance_circuit_open",
    "1 if the source circuit is OPEN or HALF_OPEN",
    ["source"],
)
CYCLES = Counter(
    "compliance_refresh_cycles_total",
    "Building refresh cycles by outcome",
    ["outcome"],  # success, failure, cancelled
)
CYCLE_LATENCY = Histogram(
    "compliance_refresh_cycle_seconds",
    "Building refresh cycle latency",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)
DEFERRED_DISPATCHES = Counter(
    "compliance_scheduler_deferred_total",
    "Due buildings deferred because the worker pool was full",
)
IN_FLIGHT = Gauge(
    "compliance_scheduler_in_flight",
    "Building cycles currently running",
)
ALERTS_EMITTED = Counter(
    "compliance_alerts_emitted_total",
    "Alerts emitted by kind",
    ["kind"],
)
ROWS_SKIPPED = Counter(
    "compliance_rows_skipped_total",
    "Raw rows rejected at validation or normalization",
    ["source", "stage"],  # validation, normalization, date_flagged
)
PORTFOLIO_LATEST_TOTAL = Gauge(
    "compliance_portfolio_latest_month_total",
    "Total events across the portfolio for the most recent month",
)
