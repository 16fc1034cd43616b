"""The optimistic ledger: locally-predicted messages awaiting confirmation."""

import logging
from typing import Iterable, Iterator, List, Optional, Tuple

from .models import Message, OptimisticEntry, new_local_id

logger = logging.getLogger(__name__)


def matches(entry: OptimisticEntry, message: Message) -> bool:
    """Whether ``message`` is the durable counterpart of ``entry``.

    Both messages of one exchange share a client token, so the role always
    has to agree. When both sides carry a token the token decides, otherwise
    the match falls back to content equality, which cannot tell apart two
    identical consecutive messages.
    """
    if entry.role != message.role:
        return False
    if entry.client_token and message.client_token:
        return entry.client_token == message.client_token
    return entry.content == message.content


class OptimisticLedger:
    """Ordered list of pending entries, mutated only through its methods.

    Readers get immutable snapshots via ``snapshot``.
    """

    def __init__(self):
        self._entries: List[OptimisticEntry] = []

    def append(
        self, role: str, content: str, client_token: Optional[str] = None
    ) -> OptimisticEntry:
        entry = OptimisticEntry(
            local_id=new_local_id(role),
            role=role,
            content=content,
            client_token=client_token,
        )
        self._entries.append(entry)
        return entry

    def retire_matching(self, confirmed: Iterable[Message]) -> List[OptimisticEntry]:
        """Removes every entry whose durable counterpart is in ``confirmed``.

        Each confirmed message retires at most one entry, the first match in
        ledger order, so a repeated phrase still pending is not over-pruned.

        Returns
        -------
        List[OptimisticEntry]
            The retired entries, in ledger order.
        """
        retired_ids = set()
        for message in confirmed:
            for entry in self._entries:
                if entry.local_id in retired_ids:
                    continue
                if matches(entry, message):
                    retired_ids.add(entry.local_id)
                    break

        retired = [e for e in self._entries if e.local_id in retired_ids]
        if retired:
            self._entries = [e for e in self._entries if e.local_id not in retired_ids]
            logger.debug("Retired %d optimistic entries", len(retired))
        return retired

    def rollback(self, local_id: str) -> Optional[OptimisticEntry]:
        """Removes one specific entry. Unknown ids are ignored."""
        for i, entry in enumerate(self._entries):
            if entry.local_id == local_id:
                del self._entries[i]
                return entry
        return None

    def clear(self) -> None:
        self._entries = []

    def snapshot(self) -> Tuple[OptimisticEntry, ...]:
        return tuple(self._entries)

    def get(self, local_id: str) -> Optional[OptimisticEntry]:
        for entry in self._entries:
            if entry.local_id == local_id:
                return entry
        return None

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[OptimisticEntry]:
        return iter(self.snapshot())

    def __contains__(self, local_id: object) -> bool:
        return any(e.local_id == local_id for e in self._entries)
