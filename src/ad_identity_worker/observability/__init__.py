"""
ad_identity_worker.observability

Observability package.

Responsibilities:
- Structured logging configuration.
- Message context propagation for consistent log enrichment.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Metrics/tracing exporters can be added here without touching the dispatcher.
