"""
ad_identity_worker.directory

Directory-service bindings package.

Responsibilities:
- Identity resolution capability contract consumed by the dispatcher.
- In-memory and LDAP (Active Directory) bindings.
"""

# Package marker; bindings are imported directly from submodules.


# --- Module Notes -----------------------------------------------------------
# The dispatcher only depends on `directory.base`; adapters own connection lifetime.
