"""Prometheus metrics for ShipFlow.

Defines and exposes operational metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram

# Draft lifecycle metrics
drafts_opened_total = Counter(
    "shipflow_drafts_opened_total",
    "Drafts opened by the lifecycle manager",
    ["mode"]  # mode: created|resumed|fallback_created
)

section_persist_failures_total = Counter(
    "shipflow_section_persist_failures_total",
    "Section persists that failed while the navigator advanced optimistically",
    ["section"]
)

# Identifier metrics
identifier_fallbacks_total = Counter(
    "shipflow_identifier_fallbacks_total",
    "Shipment identifiers produced by the timestamp fallback strategy",
    ["reason"]  # reason: dependency_error|collisions_exhausted
)

identifier_collisions_total = Counter(
    "shipflow_identifier_collisions_total",
    "Candidate shipment identifiers rejected because they were already taken"
)

# Booking metrics
bookings_total = Counter(
    "shipflow_bookings_total",
    "Booking attempts by terminal phase",
    ["carrier", "outcome"]  # outcome: completed|error
)

booking_duration_seconds = Histogram(
    "shipflow_booking_duration_seconds",
    "Wall time from commit to terminal phase of a booking attempt",
    ["carrier"],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

document_generation_total = Counter(
    "shipflow_document_generation_total",
    "Follow-up document calls after a reservation",
    ["carrier", "document", "status"]  # document: label|bol, status: success|failed|error
)

# Workspace metrics
workspaces_evicted_total = Counter(
    "shipflow_workspaces_evicted_total",
    "Open workspaces dropped from the in-process registry",
    ["reason"]  # reason: idle|capacity
)
