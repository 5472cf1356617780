"""
ad_identity_worker.client

Command line tool that sends one Action Request to the worker's queue.

Responsibilities:
- Build and encode an Action Request from command line arguments.
- Connect to Azure Service Bus by connection string (`conn`) or namespace (`fqn`).
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any

import click
from azure.identity.aio import DefaultAzureCredential
from azure.servicebus import ServiceBusMessage
from azure.servicebus.aio import ServiceBusClient

from ad_identity_worker.actions import ActionType, AdIdentityAction, IdentityType, encode_action


class WireEnumParam(click.ParamType):
    # Same acceptance rules as the worker: member name (any case) or ordinal.
    def __init__(self, enum_type: type[ActionType] | type[IdentityType]) -> None:
        self.enum_type = enum_type
        self.name = enum_type.__name__

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None):
        try:
            return self.enum_type.parse(value)
        except ValueError:
            choices = ", ".join(member.value for member in self.enum_type)
            self.fail(f"{value!r} is not one of: {choices}", param, ctx)


def message_arguments(func):
    func = click.argument("action", type=WireEnumParam(ActionType))(func)
    func = click.argument("identity")(func)
    func = click.argument("identity_type", metavar="TYPE", type=WireEnumParam(IdentityType))(func)
    func = click.argument("queue")(func)
    func = click.option(
        "--correlation-id",
        default=None,
        help="Correlation id attached to the message (generated when omitted).",
    )(func)
    return func


def build_message(*, identity_type: IdentityType, identity: str, action: ActionType) -> str:
    return encode_action(
        AdIdentityAction(action=action, identityType=identity_type, identity=identity)
    )


async def send_message(
    client: ServiceBusClient, *, queue: str, body: str, correlation_id: str
) -> None:
    async with client, client.get_queue_sender(queue_name=queue) as sender:
        await sender.send_messages(ServiceBusMessage(body, correlation_id=correlation_id))


@click.group()
def cli() -> None:
    """Send enable/disable commands to the AD identity worker."""


@cli.command("conn")
@click.argument("connection_string", metavar="CONN")
@message_arguments
def send_with_connection_string(
    connection_string: str,
    queue: str,
    identity_type: IdentityType,
    identity: str,
    action: ActionType,
    correlation_id: str | None,
) -> None:
    """Connect to Azure Service Bus using a connection string."""

    body = build_message(identity_type=identity_type, identity=identity, action=action)
    client = ServiceBusClient.from_connection_string(connection_string)
    asyncio.run(
        send_message(
            client, queue=queue, body=body, correlation_id=correlation_id or str(uuid.uuid4())
        )
    )
    click.echo(f"Message sent: {body}")


@cli.command("fqn")
@click.argument("namespace")
@message_arguments
def send_with_namespace(
    namespace: str,
    queue: str,
    identity_type: IdentityType,
    identity: str,
    action: ActionType,
    correlation_id: str | None,
) -> None:
    """Connect to Azure Service Bus using a fully qualified namespace."""

    body = build_message(identity_type=identity_type, identity=identity, action=action)

    async def _send() -> None:
        async with DefaultAzureCredential() as credential:
            client = ServiceBusClient(namespace, credential)
            await send_message(
                client, queue=queue, body=body, correlation_id=correlation_id or str(uuid.uuid4())
            )

    asyncio.run(_send())
    click.echo(f"Message sent: {body}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Argument order mirrors the worker's wire fields: queue, identity type, identity, action.
