"""
ad_identity_worker.actions

Action Request model carried by every inbound message.

Responsibilities:
- Define the action and identity-kind enums shared by worker and client.
- Decode message bodies strictly: unknown fields, undefined enum members and
  missing values are rejected instead of falling back to defaults.
- Provide the canonical wire encoding used by the message client.
"""

from __future__ import annotations

import enum
import re
from typing import Any, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

_ORDINAL_RE = re.compile(r"^[+-]?\d+$")


class ActionParseError(Exception):
    """
    Raised when a message body is not a valid Action Request.
    """


class _WireEnum(enum.StrEnum):
    # Ordinal == declaration order; both ordinals and names are part of the wire contract.

    @property
    def ordinal(self) -> int:
        return list(type(self)).index(self)

    @classmethod
    def parse(cls, raw: Any) -> Self:
        """
        Accept a member name (case-insensitive) or an ordinal (number or numeric string).
        Anything outside the declared member set is rejected.
        """

        if isinstance(raw, cls):
            return raw
        # bool is an int subclass; `true` must not silently become ordinal 1.
        if isinstance(raw, bool):
            raise ValueError(f"invalid {cls.__name__} value: {raw!r}")
        if isinstance(raw, str):
            text = raw.strip()
            if _ORDINAL_RE.match(text):
                return cls._from_ordinal(int(text))
            for member in cls:
                if member.value.lower() == text.lower():
                    return member
            raise ValueError(f"failed to parse {raw!r} to {cls.__name__}")
        if isinstance(raw, int):
            return cls._from_ordinal(raw)
        raise ValueError(f"invalid token for {cls.__name__}, expected string or integer")

    @classmethod
    def _from_ordinal(cls, ordinal: int) -> Self:
        members = list(cls)
        if 0 <= ordinal < len(members):
            return members[ordinal]
        raise ValueError(f"{ordinal} is not a defined {cls.__name__} member")


class ActionType(_WireEnum):
    enable = "Enable"
    disable = "Disable"


class IdentityType(_WireEnum):
    # Order matches the directory-service IdentityType ordinals (SamAccountName=0 ... Guid=5).
    sam_account_name = "SamAccountName"
    common_name = "Name"
    user_principal_name = "UserPrincipalName"
    distinguished_name = "DistinguishedName"
    sid = "Sid"
    guid = "Guid"


class AdIdentityAction(BaseModel):
    """
    One administrative command: apply `action` to the user identified by
    (`identity_type`, `identity`).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    action: ActionType
    identity_type: IdentityType = Field(alias="identityType")
    identity: StrictStr

    @model_validator(mode="before")
    @classmethod
    def _fold_field_names(cls, data: Any) -> Any:
        # Field names match case-insensitively; unknown keys are left for extra="forbid".
        if not isinstance(data, dict):
            return data
        canonical = {"action": "action", "identitytype": "identityType", "identity": "identity"}
        folded: dict[str, Any] = {}
        for key, value in data.items():
            name = canonical.get(key.lower(), key) if isinstance(key, str) else key
            if name in folded:
                raise ValueError(f"duplicate field {key!r}")
            folded[name] = value
        return folded

    @field_validator("action", mode="before")
    @classmethod
    def _parse_action(cls, value: Any) -> ActionType:
        return ActionType.parse(value)

    @field_validator("identity_type", mode="before")
    @classmethod
    def _parse_identity_type(cls, value: Any) -> IdentityType:
        return IdentityType.parse(value)

    @field_validator("identity")
    @classmethod
    def _identity_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("identity must not be empty")
        return value


def parse_action(body: str | bytes) -> AdIdentityAction:
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ActionParseError(f"body is not valid UTF-8: {e}") from e
    try:
        return AdIdentityAction.model_validate_json(body)
    except ValidationError as e:
        raise ActionParseError(str(e)) from e


def encode_action(action: AdIdentityAction) -> str:
    # Enum members serialize by name ("Enable", "Sid"), which parse_action accepts.
    return action.model_dump_json(by_alias=True)


# --- Module Notes -----------------------------------------------------------
# The worker and `client` share this module so producer and consumer can never
# drift apart on field names or enum spellings.
