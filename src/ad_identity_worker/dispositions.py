"""
ad_identity_worker.dispositions

Terminal outcomes of processing one inbound message.

Responsibilities:
- Enumerate the dead-letter reasons (exact strings are an operator-facing contract).
- Model the single terminal disposition (complete or dead-letter) of a message.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass


class DeadLetterReason(enum.StrEnum):
    # Values are attached to dead-lettered messages; operators key off them. Never reword.
    parsing_failed = "Parsing failed"
    identity_type_not_supported = "Identity type not supported"
    identity_format_mismatch = "Failure to resolve identity (identity format mismatch)"
    multiple_matches = "Failure to uniquely resolve identity (multiple matches)"
    resolve_unknown_exception = "Failure to resolve identity (unknown exception)"
    no_match = "Failure to resolve identity (no match)"
    action_not_supported = "Action not supported"
    save_failed = "Failed to save changes"


class DispositionKind(enum.StrEnum):
    complete = "COMPLETE"
    dead_letter = "DEAD_LETTER"


@dataclass(frozen=True, slots=True)
class Disposition:
    kind: DispositionKind
    reason: DeadLetterReason | None = None

    @classmethod
    def complete(cls) -> Disposition:
        return cls(kind=DispositionKind.complete)

    @classmethod
    def dead_letter(cls, reason: DeadLetterReason) -> Disposition:
        return cls(kind=DispositionKind.dead_letter, reason=reason)

    @property
    def is_complete(self) -> bool:
        return self.kind is DispositionKind.complete


# --- Module Notes -----------------------------------------------------------
# The dispatcher computes a Disposition first and settles the message afterwards,
# which keeps "exactly one terminal transport call" a property of a single code path.
