"""
tests.test_actions

Strict decoding of Action Request payloads.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ad_identity_worker.actions import (
    ActionParseError,
    ActionType,
    AdIdentityAction,
    IdentityType,
    encode_action,
    parse_action,
)


def test_parses_canonical_payload() -> None:
    action = parse_action(
        '{"action": "Disable", "identityType": "Sid", "identity": "S-1-5-21-1-2-3-500"}'
    )

    assert action.action is ActionType.disable
    assert action.identity_type is IdentityType.sid
    assert action.identity == "S-1-5-21-1-2-3-500"


def test_field_names_and_enum_names_are_case_insensitive() -> None:
    action = parse_action(
        b'{"ACTION": "enable", "identitytype": "samaccountname", "Identity": "jdoe"}'
    )

    assert action.action is ActionType.enable
    assert action.identity_type is IdentityType.sam_account_name


@pytest.mark.parametrize(
    ("raw_action", "raw_type", "expected_action", "expected_type"),
    [
        (0, 4, ActionType.enable, IdentityType.sid),
        (1, 5, ActionType.disable, IdentityType.guid),
        ("1", "0", ActionType.disable, IdentityType.sam_account_name),
    ],
)
def test_enum_ordinals_are_accepted(raw_action, raw_type, expected_action, expected_type) -> None:
    body = f'{{"action": {_json(raw_action)}, "identityType": {_json(raw_type)}, "identity": "x"}}'
    action = parse_action(body)

    assert action.action is expected_action
    assert action.identity_type is expected_type


def test_identity_type_ordinals_follow_directory_convention() -> None:
    assert [member.ordinal for member in IdentityType] == [0, 1, 2, 3, 4, 5]
    assert IdentityType.sid.ordinal == 4
    assert IdentityType.common_name.value == "Name"


@pytest.mark.parametrize(
    "body",
    [
        "not json",
        "null",
        "[]",
        '"Enable"',
        "",
        b"\xff\xfe",
        '{"action": "Enable", "identityType": "Sid"}',
        '{"action": "Enable", "identity": "S-1-5-21-1"}',
        '{"identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": "Enable", "identityType": "Sid", "identity": "S-1-5-21-1", "comment": "x"}',
        '{"action": "Enable", "identity_type": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": "Toggle", "identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": 2, "identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": -1, "identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": "Enable", "identityType": 6, "identity": "S-1-5-21-1"}',
        '{"action": true, "identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": 1.0, "identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": null, "identityType": "Sid", "identity": "S-1-5-21-1"}',
        '{"action": "Enable", "identityType": "Sid", "identity": ""}',
        '{"action": "Enable", "identityType": "Sid", "identity": "   "}',
        '{"action": "Enable", "identityType": "Sid", "identity": 42}',
        '{"action": "Enable", "ACTION": "Disable", "identityType": "Sid", "identity": "x"}',
    ],
)
def test_rejects_malformed_payloads(body) -> None:
    with pytest.raises(ActionParseError):
        parse_action(body)


def test_action_is_immutable() -> None:
    action = parse_action('{"action": "Enable", "identityType": "Guid", "identity": "x"}')

    with pytest.raises(ValidationError):
        action.identity = "y"  # type: ignore[misc]


def test_encoded_action_uses_wire_names() -> None:
    action = AdIdentityAction(
        action=ActionType.enable, identityType=IdentityType.guid, identity="g"
    )

    encoded = encode_action(action)

    assert encoded == '{"action":"Enable","identityType":"Guid","identity":"g"}'
    assert parse_action(encoded) == action


def _json(value: object) -> str:
    return f'"{value}"' if isinstance(value, str) else str(value)
