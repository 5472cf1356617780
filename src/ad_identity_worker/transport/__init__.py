"""
ad_identity_worker.transport

Message bus bindings package.

Responsibilities:
- Transport capability contract consumed by the dispatcher.
- In-memory (development) and Azure Service Bus bindings.
"""

# Package marker; bindings are imported directly from submodules.


# --- Module Notes -----------------------------------------------------------
# The Service Bus binding is imported lazily by `worker.build_transport` so the
# Azure SDK is only loaded when it is actually selected.
