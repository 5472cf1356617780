"""
ad_identity_worker.directory.base

Directory capability consumed by the dispatcher.

Responsibilities:
- Define lookup-by-identity with distinguishable failure shapes
  (no match, multiple matches, identifier format mismatch).
- Define the scoped user principal handle (mutable enabled flag, save, release).
- Validate identifier formats per identity kind.
"""

from __future__ import annotations

import abc
import re
import uuid
from typing import Protocol

from ad_identity_worker.actions import IdentityType


class DirectoryError(Exception):
    pass


class IdentityFormatError(DirectoryError):
    """
    The identifier value does not match the declared identity kind.
    """


class MultipleMatchesError(DirectoryError):
    """
    The lookup matched more than one principal.
    """


class PrincipalValidationError(DirectoryError):
    """
    The store refused a save for a known conflict/validation condition.
    """


class UserPrincipal(abc.ABC):
    """
    Scoped handle to one directory user. Use as `async with principal:`; the
    handle is released exactly once on exit.
    """

    def __init__(self) -> None:
        self._released = False

    @property
    @abc.abstractmethod
    def display_name(self) -> str: ...

    @property
    @abc.abstractmethod
    def enabled(self) -> bool: ...

    @enabled.setter
    @abc.abstractmethod
    def enabled(self, value: bool) -> None: ...

    @abc.abstractmethod
    async def save(self) -> None: ...

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await self._release()

    async def _release(self) -> None:
        return None

    async def __aenter__(self) -> UserPrincipal:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.release()


class Directory(Protocol):
    async def find_by_identity(self, kind: IdentityType, value: str) -> UserPrincipal | None:
        """
        Zero matches -> None; several -> MultipleMatchesError;
        malformed value -> IdentityFormatError.
        """
        ...

    async def close(self) -> None: ...


_SID_RE = re.compile(r"^S-1-\d+(-\d+)+$", re.IGNORECASE)
_SAM_FORBIDDEN = set('"/\\[]:;|=,+*?<>')
SAM_ACCOUNT_NAME_MAX_LENGTH = 20


def validate_identity_format(kind: IdentityType, value: str) -> str:
    """
    Returns the normalized identifier or raises IdentityFormatError.
    Kinds without a format rule are returned unchanged.
    """

    if kind is IdentityType.sid:
        sid = value.strip().upper()
        if not _SID_RE.match(sid):
            raise IdentityFormatError(f"{value!r} is not a valid SID")
        return sid
    if kind is IdentityType.guid:
        try:
            return str(uuid.UUID(value.strip()))
        except ValueError as e:
            raise IdentityFormatError(f"{value!r} is not a valid GUID") from e
    if kind is IdentityType.sam_account_name:
        name = value.strip()
        if (
            not name
            or len(name) > SAM_ACCOUNT_NAME_MAX_LENGTH
            or name.endswith(".")
            or any(ch in _SAM_FORBIDDEN for ch in name)
        ):
            raise IdentityFormatError(f"{value!r} is not a valid sAMAccountName")
        return name
    return value


# --- Module Notes -----------------------------------------------------------
# Directory adapters own the shared connection context and its thread-safety;
# the dispatcher only holds a principal handle for the duration of one message.
