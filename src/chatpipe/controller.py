"""The conversation controller: one exchange in flight, optimistic display."""

import logging
import uuid
from typing import Callable, Iterable, List, Optional

from . import cues as cues_module
from .accumulator import StreamingAccumulator
from .errors import TransportError
from .frames import FrameDecoder
from .ledger import OptimisticLedger
from .models import (
    ASSISTANT_ROLE,
    USER_ROLE,
    ArchivedSession,
    ConversationView,
    Frame,
    FrameKind,
    Page,
    Status,
)
from .page_cache import PageCache
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


class _Cancelled(Exception):
    pass


class ConversationController:
    """Orchestrates sending, streaming, reconciliation and navigation.

    The controller moves through ``IDLE -> SENDING -> STREAMING -> IDLE``, or
    through ``FAILED`` back to ``IDLE`` when the exchange breaks. While an
    exchange is in flight further sends are rejected, not queued.

    Everything runs in the caller's thread. ``send`` returns once the stream
    has completed, failed or been cancelled; subscribers see every
    intermediate state, and may call ``cancel``, ``go_to_page`` or
    ``clear_history`` from their callback.

    Parameters
    ----------
    api : api.Api
        Transport to the chat service.
    cues : cues.Cues, optional
        Defaults to ``cues.Silent()``.
    correlate : bool, default=True
        Send a client token with each message so the reconciler can match
        durable messages by token when the store echoes it back.
    """

    def __init__(self, api, cues: Optional[cues_module.Cues] = None, correlate: bool = True):
        self.api = api
        self.cues = cues if cues is not None else cues_module.Silent()
        self.correlate = correlate

        self.ledger = OptimisticLedger()
        self.reconciler = Reconciler(self.ledger)
        self.cache = PageCache(api, on_fetch=self._on_fetch)

        self.status = Status.IDLE
        self.input = ""
        self.current_page = 1
        self.partial: Optional[str] = None
        self.error: Optional[str] = None

        self._pending_user: Optional[str] = None
        self._cancel_requested = False
        self._subscribers: List[Callable[[ConversationView], None]] = []

    # --- Observation ---

    def subscribe(self, callback: Callable[[ConversationView], None]) -> Callable[[], None]:
        """Registers a view listener. Returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def view(self) -> ConversationView:
        on_first_page = self.current_page == 1
        page = self.cache.peek(self.current_page)
        return ConversationView(
            page=self.current_page,
            entries=self.reconciler.merge(page, show_pending=on_first_page),
            total=self.cache.total,
            total_pages=self.cache.total_pages,
            status=self.status,
            partial=self.partial if on_first_page else None,
            error=self.error,
        )

    def _publish(self) -> None:
        if not self._subscribers:
            return
        snapshot = self.view()
        for callback in list(self._subscribers):
            callback(snapshot)

    def _set_status(self, status: Status) -> None:
        if status is not self.status:
            logger.info("Conversation %s -> %s", self.status.value, status.value)
            self.status = status
        self._publish()

    @property
    def busy(self) -> bool:
        return self.status in (Status.SENDING, Status.STREAMING)

    # --- History ---

    def load(self) -> ConversationView:
        """Fetches page 1 and shows it."""
        self.current_page = 1
        self.cache.refresh(1)
        self._publish()
        return self.view()

    def refresh(self) -> Page:
        """Re-fetches page 1, the only page that changes during a conversation."""
        page = self.cache.refresh(1)
        self._publish()
        return page

    def go_to_page(self, page: int) -> ConversationView:
        """Shows another page. Allowed while a reply is streaming."""
        fetched = self.cache.get(page)
        self.current_page = fetched.number
        self._publish()
        return self.view()

    def _on_fetch(self, page: Page) -> None:
        if page.number == 1:
            self.reconciler.on_page_one(page)

    # --- Exchange ---

    def set_input(self, text: str) -> None:
        self.input = text

    def send(self, text: Optional[str] = None) -> bool:
        """Sends ``text`` (or the input buffer) and streams the reply.

        Returns
        -------
        bool
            ``True`` when the reply completed. ``False`` when the send was
            rejected (busy or empty input), failed or was cancelled.
        """
        if self.busy:
            logger.info("Send rejected: an exchange is already in flight")
            return False

        raw = self.input if text is None else text
        message = raw.strip()
        if not message:
            return False

        token = uuid.uuid4().hex if self.correlate else None
        self.error = None
        self.partial = None
        self._cancel_requested = False
        entry = self.ledger.append(USER_ROLE, message, client_token=token)
        self._pending_user = entry.local_id
        self.input = ""
        self.cues.fire(cues_module.SEND)
        self._set_status(Status.SENDING)

        try:
            self._check_cancelled()
            chunks = self.api.stream_message(message, client_token=token)
            reply = self._consume(chunks)
        except _Cancelled:
            self._abort()
            return False
        except KeyboardInterrupt:
            self._abort()
            raise
        except TransportError as e:
            self._fail(str(e))
            return False
        except Exception as e:
            self._fail(f"Unexpected error: {e}")
            raise

        self._complete(reply, token)
        return True

    def cancel(self) -> bool:
        """Aborts the exchange in flight. Its user entry is rolled back."""
        if not self.busy:
            return False
        self._cancel_requested = True
        return True

    def _consume(self, chunks: Iterable[bytes]) -> str:
        decoder = FrameDecoder()
        accumulator = StreamingAccumulator(on_partial=self._on_partial)
        self._set_status(Status.STREAMING)
        accumulator.start()
        try:
            for chunk in chunks:
                self._check_cancelled()
                for frame in decoder.decode(chunk):
                    reply = self._apply(frame, accumulator)
                    if reply is not None:
                        return reply
            for frame in decoder.close():
                reply = self._apply(frame, accumulator)
                if reply is not None:
                    return reply
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()
        self._check_cancelled()
        raise TransportError("Stream closed before the reply completed")

    def _apply(self, frame: Frame, accumulator: StreamingAccumulator) -> Optional[str]:
        if frame.kind is FrameKind.ERROR:
            raise TransportError(frame.error or "Failed to generate response")
        reply = accumulator.feed(frame)
        self._check_cancelled()
        return reply

    def _check_cancelled(self) -> None:
        if self._cancel_requested:
            raise _Cancelled()

    def _on_partial(self, text: str) -> None:
        self.partial = text
        self._publish()

    def _complete(self, reply: str, token: Optional[str]) -> None:
        user_entry = self.ledger.get(self._pending_user) if self._pending_user else None
        assistant_entry = self.ledger.append(ASSISTANT_ROLE, reply, client_token=token)
        if user_entry is not None:
            self.reconciler.track(user_entry)
        self.reconciler.track(assistant_entry)
        self._pending_user = None
        self.partial = None
        self.cues.fire(cues_module.COMPLETE)

        self.cache.invalidate(1)
        self._set_status(Status.IDLE)
        try:
            self.cache.get(1)
        except TransportError as e:
            logger.warning("Could not refresh page 1 after reply: %s", e)
        self._publish()

    def _fail(self, message: str) -> None:
        logger.warning("Exchange failed: %s", message)
        self._rollback_pending()
        self.error = message
        self.cues.fire(cues_module.ERROR)
        self._set_status(Status.FAILED)
        self._set_status(Status.IDLE)

    def _abort(self) -> None:
        logger.info("Exchange cancelled")
        self._rollback_pending()
        self._cancel_requested = False
        self._set_status(Status.IDLE)

    def _rollback_pending(self) -> None:
        if self._pending_user is not None:
            self.ledger.rollback(self._pending_user)
            self.reconciler.forget(self._pending_user)
        self._pending_user = None
        self.partial = None

    # --- Clearing and archiving ---

    def clear_history(self) -> None:
        """Deletes all durable messages and resets the client to page 1.

        An exchange in flight is cancelled, and the ledger is emptied so no
        optimistic entry outlives the history it belonged to.
        """
        self.api.clear_history()
        logger.info("Chat history cleared")
        self._reset_client()

    def archive_history(self) -> int:
        """Archives the active history, then resets the client like a clear."""
        count = self.api.archive_history()
        logger.info("Archived %d messages", count)
        self._reset_client()
        return count

    def list_archives(self) -> List[ArchivedSession]:
        return self.api.list_archives()

    def restore_archive(self, archived_at: str) -> int:
        count = self.api.restore_archive(archived_at)
        self.cache.clear()
        self.current_page = 1
        self._refetch_first_page()
        return count

    def _reset_client(self) -> None:
        if self.busy:
            self._cancel_requested = True
        self.ledger.clear()
        self.reconciler.reset()
        self._pending_user = None
        self.partial = None
        self.error = None
        self.cache.clear()
        self.current_page = 1
        self._refetch_first_page()

    def _refetch_first_page(self) -> None:
        try:
            self.cache.get(1)
        except TransportError as e:
            logger.warning("Could not refresh page 1: %s", e)
        self._publish()
