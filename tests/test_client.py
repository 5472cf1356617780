"""
tests.test_client

Message-sending CLI: argument parsing and message encoding.
"""

from __future__ import annotations

import json

from click.testing import CliRunner

from ad_identity_worker import client as client_module
from ad_identity_worker.actions import ActionType, IdentityType, parse_action


class FakeServiceBusClient:
    created_with: list[str] = []

    @classmethod
    def from_connection_string(cls, connection_string: str) -> FakeServiceBusClient:
        cls.created_with.append(connection_string)
        return cls()


def test_build_message_is_accepted_by_the_worker() -> None:
    body = client_module.build_message(
        identity_type=IdentityType.sam_account_name, identity="jdoe", action=ActionType.disable
    )

    assert json.loads(body) == {
        "action": "Disable",
        "identityType": "SamAccountName",
        "identity": "jdoe",
    }
    assert parse_action(body).action is ActionType.disable


def test_conn_command_sends_encoded_action(monkeypatch) -> None:
    sent: list[dict] = []

    async def fake_send(client, *, queue, body, correlation_id) -> None:
        sent.append({"queue": queue, "body": body, "correlation_id": correlation_id})

    monkeypatch.setattr(client_module, "ServiceBusClient", FakeServiceBusClient)
    monkeypatch.setattr(client_module, "send_message", fake_send)

    result = CliRunner().invoke(
        client_module.cli,
        [
            "conn",
            "Endpoint=sb://x/",
            "actions",
            "sid",
            "S-1-5-21-1-2-3",
            "enable",
            "--correlation-id",
            "c-9",
        ],
    )

    assert result.exit_code == 0, result.output
    assert FakeServiceBusClient.created_with[-1] == "Endpoint=sb://x/"
    assert sent == [
        {
            "queue": "actions",
            "body": '{"action":"Enable","identityType":"Sid","identity":"S-1-5-21-1-2-3"}',
            "correlation_id": "c-9",
        }
    ]
    assert "Message sent:" in result.output


def test_unknown_identity_type_is_rejected_before_connecting(monkeypatch) -> None:
    monkeypatch.setattr(client_module, "ServiceBusClient", FakeServiceBusClient)
    before = len(FakeServiceBusClient.created_with)

    result = CliRunner().invoke(
        client_module.cli, ["conn", "Endpoint=sb://x/", "actions", "Email", "jdoe", "Enable"]
    )

    assert result.exit_code == 2
    assert "is not one of" in result.output
    assert len(FakeServiceBusClient.created_with) == before
