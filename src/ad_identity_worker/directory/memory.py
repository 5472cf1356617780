"""
ad_identity_worker.directory.memory

In-memory directory binding.

Responsibilities:
- Hold user records for development runs and tests.
- Honour the lookup contract (no match / multiple matches / format mismatch).
- Hand out principal copies that write back only on save().
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path

from pydantic import TypeAdapter

from ad_identity_worker.actions import IdentityType
from ad_identity_worker.directory.base import (
    DirectoryError,
    MultipleMatchesError,
    UserPrincipal,
    validate_identity_format,
)


@dataclass(slots=True)
class DirectoryUser:
    sam_account_name: str
    sid: str
    object_guid: str
    user_principal_name: str | None = None
    enabled: bool = True


class InMemoryPrincipal(UserPrincipal):
    def __init__(self, *, directory: InMemoryDirectory, user: DirectoryUser) -> None:
        super().__init__()
        self._directory = directory
        self._user = replace(user)

    @property
    def display_name(self) -> str:
        return self._user.user_principal_name or self._user.sam_account_name

    @property
    def enabled(self) -> bool:
        return self._user.enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._user.enabled = value

    async def save(self) -> None:
        self._directory._commit(self._user)

    async def _release(self) -> None:
        self._directory.open_handles -= 1


class InMemoryDirectory:
    def __init__(self, users: list[DirectoryUser] | None = None) -> None:
        self._users: list[DirectoryUser] = []
        self.open_handles = 0
        for user in users or []:
            self.add_user(user)

    @classmethod
    def from_seed_file(cls, path: str | Path) -> InMemoryDirectory:
        # Seed format: JSON list of DirectoryUser objects.
        users = TypeAdapter(list[DirectoryUser]).validate_json(Path(path).read_bytes())
        return cls(users)

    def add_user(self, user: DirectoryUser) -> None:
        self._users.append(replace(user))

    def get_user(self, sam_account_name: str) -> DirectoryUser | None:
        for user in self._users:
            if user.sam_account_name.lower() == sam_account_name.lower():
                return replace(user)
        return None

    async def find_by_identity(self, kind: IdentityType, value: str) -> UserPrincipal | None:
        needle = validate_identity_format(kind, value)
        matches = [user for user in self._users if self._matches(user, kind, needle)]
        if len(matches) > 1:
            raise MultipleMatchesError(f"{len(matches)} principals match {kind}={value!r}")
        if not matches:
            return None
        self.open_handles += 1
        return InMemoryPrincipal(directory=self, user=matches[0])

    async def close(self) -> None:
        return None

    def _matches(self, user: DirectoryUser, kind: IdentityType, needle: str) -> bool:
        if kind is IdentityType.sid:
            return user.sid.upper() == needle
        if kind is IdentityType.sam_account_name:
            return user.sam_account_name.lower() == needle.lower()
        if kind is IdentityType.guid:
            return validate_identity_format(kind, user.object_guid) == needle
        if kind is IdentityType.user_principal_name:
            return (user.user_principal_name or "").lower() == needle.lower()
        raise DirectoryError(f"lookup by {kind} is not implemented")

    def _commit(self, saved: DirectoryUser) -> None:
        for index, user in enumerate(self._users):
            if user.sid == saved.sid:
                self._users[index] = replace(saved)
                return
        raise DirectoryError(f"principal {saved.sam_account_name!r} no longer exists")


# --- Module Notes -----------------------------------------------------------
# Selected when `Settings.directory_binding == "memory"`; seed it with
# `ADW_DIRECTORY_SEED_FILE` for local end-to-end runs.
