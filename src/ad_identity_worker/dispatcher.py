"""
ad_identity_worker.dispatcher

Per-message state machine: parse -> resolve -> apply -> persist -> settle.

Responsibilities:
- Turn one inbound message into exactly one terminal disposition.
- Map every payload/resolution/action/persistence failure to its dead-letter reason.
- Guarantee the principal handle is released on every path after resolution.
- Log each decision point with the message's correlation id bound.
"""

from __future__ import annotations

from ad_identity_worker.actions import ActionParseError, ActionType, IdentityType, parse_action
from ad_identity_worker.directory.base import (
    Directory,
    IdentityFormatError,
    MultipleMatchesError,
    PrincipalValidationError,
    UserPrincipal,
)
from ad_identity_worker.dispositions import DeadLetterReason, Disposition
from ad_identity_worker.observability.context import message_context
from ad_identity_worker.observability.logging import get_logger
from ad_identity_worker.transport.base import InboundMessage, TransportErrorEvent

log = get_logger(__name__)

# Identity kinds wired to a directory lookup. Anything else (including members
# added to IdentityType later) is unsupported until listed here.
SUPPORTED_IDENTITY_TYPES = frozenset(
    {IdentityType.sid, IdentityType.sam_account_name, IdentityType.guid}
)

# Enabled-flag value each action applies.
ACTION_ENABLED_STATE: dict[ActionType, bool] = {
    ActionType.enable: True,
    ActionType.disable: False,
}


class MessageDispatcher:
    """
    Stateless across messages; one instance serves every concurrent handler
    invocation. The directory context is shared and owned by its adapter.
    """

    def __init__(self, *, directory: Directory) -> None:
        self._directory = directory

    async def handle(self, message: InboundMessage) -> None:
        # Message handler registered with the transport: decide, then settle exactly once.
        with message_context(correlation_id=message.correlation_id):
            disposition = await self._process(message)
            if disposition.reason is None:
                await message.complete()
                log.info("message_completed")
            else:
                await message.dead_letter(disposition.reason.value)
                log.info("message_dead_lettered", reason=disposition.reason.value)

    async def process(self, message: InboundMessage) -> Disposition:
        """
        Run the state machine without settling the message.
        """

        with message_context(correlation_id=message.correlation_id):
            return await self._process(message)

    async def on_transport_error(self, event: TransportErrorEvent) -> None:
        # Error channel: faults outside the per-message state machine.
        log.error(
            "transport_error",
            source=event.source,
            entity_path=event.entity_path,
            error=repr(event.exception),
            exc_info=event.exception,
        )

    async def _process(self, message: InboundMessage) -> Disposition:
        log.info("message_received", body_length=len(message.body))

        try:
            action = parse_action(message.body)
        except ActionParseError as e:
            log.warning("action_not_parsable", error=str(e))
            return Disposition.dead_letter(DeadLetterReason.parsing_failed)

        if action.identity_type not in SUPPORTED_IDENTITY_TYPES:
            log.warning("identity_type_not_supported", identity_type=action.identity_type.value)
            return Disposition.dead_letter(DeadLetterReason.identity_type_not_supported)

        principal_or_reason = await self._resolve(action.identity_type, action.identity)
        if isinstance(principal_or_reason, DeadLetterReason):
            return Disposition.dead_letter(principal_or_reason)

        async with principal_or_reason as principal:
            return await self._apply(principal, action.action)

    async def _resolve(
        self, identity_type: IdentityType, identity: str
    ) -> UserPrincipal | DeadLetterReason:
        try:
            principal = await self._directory.find_by_identity(identity_type, identity)
        except IdentityFormatError as e:
            log.warning("identity_format_mismatch", identity_type=identity_type.value, error=str(e))
            return DeadLetterReason.identity_format_mismatch
        except MultipleMatchesError as e:
            log.warning(
                "identity_multiple_matches", identity_type=identity_type.value, error=str(e)
            )
            return DeadLetterReason.multiple_matches
        except Exception as e:
            log.warning(
                "identity_resolution_failed",
                identity_type=identity_type.value,
                error=repr(e),
            )
            return DeadLetterReason.resolve_unknown_exception

        if principal is None:
            log.warning("identity_no_match", identity_type=identity_type.value, identity=identity)
            return DeadLetterReason.no_match
        log.info("identity_resolved", principal=principal.display_name)
        return principal

    async def _apply(self, principal: UserPrincipal, action: ActionType) -> Disposition:
        enabled = ACTION_ENABLED_STATE.get(action)
        if enabled is None:
            log.warning("action_not_supported", action=str(action))
            return Disposition.dead_letter(DeadLetterReason.action_not_supported)

        # Re-applying the current state is a no-op mutation, not an error (redelivery).
        previously_enabled = principal.enabled
        principal.enabled = enabled
        log.info(
            "identity_enabled" if enabled else "identity_disabled",
            principal=principal.display_name,
            changed=previously_enabled != enabled,
        )

        try:
            await principal.save()
        except PrincipalValidationError as e:
            log.warning("save_rejected", principal=principal.display_name, error=str(e))
            return Disposition.dead_letter(DeadLetterReason.save_failed)
        except Exception as e:
            log.warning("save_failed", principal=principal.display_name, error=repr(e))
            return Disposition.dead_letter(DeadLetterReason.save_failed)

        log.info("changes_saved", principal=principal.display_name)
        return Disposition.complete()


# --- Module Notes -----------------------------------------------------------
# asyncio.CancelledError is a BaseException and passes through untouched: on
# shutdown the message stays unsettled and the bus redelivers it.
