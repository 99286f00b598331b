"""Application metrics using the Prometheus client library.

All metrics are defined here, in one inventory.  The modules that own
the behavior import them and increment/observe at the point of action.

  progress_mutations_total             orchestrator outcomes per operation
  progress_mutation_duration_seconds   remote write + reload latency
  progress_aggregation_anomalies_total malformed or inconsistent input
  cache_sync_operations_total          per-key cache writes/removals/failures
  certificate_evaluations_total        granted tier per evaluation
  progress_sessions_evicted_total      idle sessions dropped to stay under the cap
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

PROGRESS_MUTATIONS = Counter(
    "progress_mutations_total",
    "Progress mutations by operation and result",
    ["operation", "result"],  # result: success|failure|cancelled|invalid
)

MUTATION_DURATION = Histogram(
    "progress_mutation_duration_seconds",
    "Time spent in a progress mutation, remote write through reload",
    ["operation"],
    # Dominated by the remote store round trips (write + fetch)
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

AGGREGATION_ANOMALIES = Counter(
    "progress_aggregation_anomalies_total",
    "Aggregation inputs that were malformed or inconsistent",
    ["kind"],  # malformed_input|inconsistent_record|duplicate_record|rejected_row
)

CACHE_SYNC_OPERATIONS = Counter(
    "cache_sync_operations_total",
    "Local cache operations performed during synchronization",
    ["result"],  # written|removed|failed
)

CERTIFICATE_EVALUATIONS = Counter(
    "certificate_evaluations_total",
    "Certificate evaluations by highest granted tier",
    ["outcome"],  # none|virtual|complete
)

SESSIONS_EVICTED = Counter(
    "progress_sessions_evicted_total",
    "Idle learner sessions signed out to stay under PROGRESS_MAX_SESSIONS",
)
