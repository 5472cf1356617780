"""
ad_identity_worker.directory.ldap

Active Directory binding over LDAP (ldap3).

Responsibilities:
- Resolve users by SID, sAMAccountName or objectGUID.
- Map the enabled flag onto the ACCOUNTDISABLE bit of userAccountControl.
- Run blocking ldap3 calls in worker threads so concurrent handlers never wait
  on each other's directory round-trips.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

from ldap3 import MODIFY_REPLACE, NONE, SAFE_SYNC, SUBTREE, Connection, Server
from ldap3.core.results import (
    RESULT_CONSTRAINT_VIOLATION,
    RESULT_INSUFFICIENT_ACCESS_RIGHTS,
    RESULT_SIZE_LIMIT_EXCEEDED,
    RESULT_SUCCESS,
    RESULT_UNWILLING_TO_PERFORM,
)
from ldap3.utils.conv import escape_bytes, escape_filter_chars

from ad_identity_worker.actions import IdentityType
from ad_identity_worker.directory.base import (
    DirectoryError,
    MultipleMatchesError,
    PrincipalValidationError,
    UserPrincipal,
    validate_identity_format,
)
from ad_identity_worker.observability.logging import get_logger
from ad_identity_worker.settings import Settings

log = get_logger(__name__)

ACCOUNTDISABLE = 0x0002
USER_FILTER = "(objectCategory=person)(objectClass=user)"
USER_ATTRIBUTES = ["distinguishedName", "sAMAccountName", "userPrincipalName", "userAccountControl"]

# Modify results the directory reports for policy/validation refusals.
_VALIDATION_RESULTS = frozenset(
    {RESULT_CONSTRAINT_VIOLATION, RESULT_UNWILLING_TO_PERFORM, RESULT_INSUFFICIENT_ACCESS_RIGHTS}
)


def build_identity_filter(kind: IdentityType, value: str) -> str:
    """
    LDAP filter for one identity kind; raises IdentityFormatError for malformed values.
    """

    normalized = validate_identity_format(kind, value)
    if kind is IdentityType.sid:
        # AD accepts the string SID form for objectSid in filters.
        clause = f"(objectSid={normalized})"
    elif kind is IdentityType.sam_account_name:
        clause = f"(sAMAccountName={escape_filter_chars(normalized)})"
    elif kind is IdentityType.guid:
        # objectGUID is stored as the little-endian byte layout of the GUID.
        clause = f"(objectGUID={escape_bytes(uuid.UUID(normalized).bytes_le)})"
    else:
        raise DirectoryError(f"lookup by {kind} is not implemented")
    return f"(&{USER_FILTER}{clause})"


def _first_raw(entry: dict[str, Any], name: str) -> str | None:
    values = entry.get("raw_attributes", {}).get(name) or []
    if not values:
        return None
    raw = values[0]
    return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)


class LdapPrincipal(UserPrincipal):
    def __init__(
        self,
        *,
        directory: LdapDirectory,
        dn: str,
        sam_account_name: str,
        user_principal_name: str | None,
        user_account_control: int,
    ) -> None:
        super().__init__()
        self._directory = directory
        self.dn = dn
        self.sam_account_name = sam_account_name
        self.user_principal_name = user_principal_name
        self._stored_uac = user_account_control
        self._uac = user_account_control

    @property
    def display_name(self) -> str:
        return self.user_principal_name or self.sam_account_name

    @property
    def enabled(self) -> bool:
        return not self._uac & ACCOUNTDISABLE

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._uac = self._uac & ~ACCOUNTDISABLE if value else self._uac | ACCOUNTDISABLE

    async def save(self) -> None:
        # Redelivered messages find the flag already applied; nothing to write.
        if self._uac == self._stored_uac:
            return
        await self._directory._write_user_account_control(self.dn, self._uac)
        self._stored_uac = self._uac


class LdapDirectory:
    """
    Shared, thread-safe (SAFE_SYNC) connection created once at startup.
    """

    def __init__(self, *, connection: Connection, search_base: str) -> None:
        self._connection = connection
        self._search_base = search_base

    @classmethod
    async def connect(cls, settings: Settings) -> LdapDirectory:
        if not settings.ldap_server or not settings.ldap_search_base:
            raise DirectoryError("ldap_server and ldap_search_base have to be configured")
        server = Server(
            settings.ldap_server,
            use_ssl=settings.ldap_use_ssl,
            get_info=NONE,
            connect_timeout=settings.ldap_timeout_seconds,
        )
        connection = Connection(
            server,
            user=settings.ldap_user,
            password=settings.ldap_password,
            client_strategy=SAFE_SYNC,
            receive_timeout=settings.ldap_timeout_seconds,
            raise_exceptions=False,
        )
        await asyncio.to_thread(connection.bind)
        if not connection.bound:
            raise DirectoryError(f"LDAP bind to {settings.ldap_server} failed")
        log.info("directory_connected", server=settings.ldap_server)
        return cls(connection=connection, search_base=settings.ldap_search_base)

    async def find_by_identity(self, kind: IdentityType, value: str) -> UserPrincipal | None:
        search_filter = build_identity_filter(kind, value)
        # size_limit=2 is enough to tell "one" from "many".
        status, result, response, _ = await asyncio.to_thread(
            self._connection.search,
            self._search_base,
            search_filter,
            search_scope=SUBTREE,
            attributes=USER_ATTRIBUTES,
            size_limit=2,
        )
        code = result.get("result")
        if not status and code not in (RESULT_SUCCESS, RESULT_SIZE_LIMIT_EXCEEDED):
            raise DirectoryError(f"LDAP search failed: {result.get('description')}")

        entries = [entry for entry in response or [] if entry.get("type") == "searchResEntry"]
        if len(entries) > 1 or code == RESULT_SIZE_LIMIT_EXCEEDED:
            raise MultipleMatchesError(f"several principals match {kind}={value!r}")
        if not entries:
            return None

        entry = entries[0]
        return LdapPrincipal(
            directory=self,
            dn=entry["dn"],
            sam_account_name=_first_raw(entry, "sAMAccountName") or "",
            user_principal_name=_first_raw(entry, "userPrincipalName"),
            user_account_control=int(_first_raw(entry, "userAccountControl") or 0),
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._connection.unbind)

    async def _write_user_account_control(self, dn: str, value: int) -> None:
        status, result, _, _ = await asyncio.to_thread(
            self._connection.modify,
            dn,
            {"userAccountControl": [(MODIFY_REPLACE, [str(value)])]},
        )
        if status:
            return
        description = result.get("description")
        if result.get("result") in _VALIDATION_RESULTS:
            raise PrincipalValidationError(f"directory refused change to {dn}: {description}")
        raise DirectoryError(f"LDAP modify failed for {dn}: {description}")


# --- Module Notes -----------------------------------------------------------
# ldap3 threads are not interrupted by task cancellation; `ldap_timeout_seconds`
# bounds how long a cancelled handler's thread can linger after shutdown.
