"""Concrete implementations of the chat service transport."""

import logging
import warnings
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

import requests

from .config import BASE_URL, CHAT_PATH, MAX_MESSAGE_CHARS, NOTES_PATH, PAGE_SIZE, REQUEST_TIMEOUT
from .errors import InvalidMessageError, TransportError
from .frames import encode_frame
from .models import ASSISTANT_ROLE, USER_ROLE, ArchivedSession, Note, Page

logger = logging.getLogger(__name__)


class Api(ABC):
    """Interface to the service that generates replies and stores history.

    Every method raises ``TransportError`` when the service cannot be reached
    or answers with a non-success status.
    """

    @abstractmethod
    def stream_message(
        self, message: str, client_token: Optional[str] = None
    ) -> Iterator[bytes]:
        """Sends a user message and returns the raw response body.

        The request is issued before this method returns, so a rejected
        request raises immediately. The returned iterator yields the body in
        chunks as they arrive; closing it aborts the stream.

        Parameters
        ----------
        message : str
            The user's message.
        client_token : str, optional
            Correlation token the store echoes on both durable messages of
            this exchange, when it supports that.

        Returns
        -------
        Iterator[bytes]
            Chunks of the ``text/event-stream`` body.
        """
        pass

    @abstractmethod
    def fetch_page(self, page: int) -> Page:
        """Returns one page of confirmed history. Page 1 is the newest."""
        pass

    @abstractmethod
    def clear_history(self) -> None:
        pass

    @abstractmethod
    def archive_history(self) -> int:
        """Archives the active history. Returns the number of messages moved."""
        pass

    @abstractmethod
    def list_archives(self) -> List[ArchivedSession]:
        pass

    @abstractmethod
    def restore_archive(self, archived_at: str) -> int:
        pass

    @abstractmethod
    def get_notes(self) -> Note:
        pass

    @abstractmethod
    def save_notes(self, content: str) -> Note:
        pass


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}: {response.reason or 'request failed'}"


class Http(Api):
    """Talks to the chat service over HTTP with ``requests``.

    Parameters
    ----------
    base_url : str, default=config.BASE_URL
        Root URL of the service, without a trailing slash.
    timeout : float, default=config.REQUEST_TIMEOUT
        Connect and read timeout in seconds. For streams it bounds the gap
        between two chunks.
    session : requests.Session, optional
        Session to reuse, for example one carrying the service's session
        cookie.
    """

    def __init__(
        self,
        base_url: str = BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        if not response.ok:
            message = _error_message(response)
            response.close()
            raise TransportError(message, status_code=response.status_code)
        return response

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{method} {path} returned invalid JSON") from e

    def stream_message(self, message, client_token=None):
        payload: Dict[str, Any] = {"message": message}
        if client_token:
            payload["clientToken"] = client_token
        response = self._request(
            "POST",
            CHAT_PATH,
            json=payload,
            headers={"Accept": "text/event-stream"},
            stream=True,
        )
        return self._iter_body(response)

    def _iter_body(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=None):
                if chunk:
                    yield chunk
        except requests.RequestException as e:
            raise TransportError(f"Stream interrupted: {e}") from e
        finally:
            response.close()

    def fetch_page(self, page):
        data = self._json("GET", f"{CHAT_PATH}/page/{page}")
        return Page.model_validate({**data, "number": page})

    def clear_history(self):
        self._request("DELETE", CHAT_PATH)

    def archive_history(self):
        data = self._json("POST", f"{CHAT_PATH}/archive")
        return int(data.get("archivedCount", 0))

    def list_archives(self):
        data = self._json("GET", f"{CHAT_PATH}/archived")
        return [ArchivedSession.model_validate(item) for item in data]

    def restore_archive(self, archived_at):
        data = self._json(
            "POST", f"{CHAT_PATH}/unarchive", json={"archivedAt": archived_at}
        )
        return int(data.get("unarchivedCount", 0))

    def get_notes(self):
        return Note.model_validate(self._json("GET", NOTES_PATH))

    def save_notes(self, content):
        return Note.model_validate(
            self._json("POST", NOTES_PATH, json={"content": content})
        )


class Local(Api):
    """Runs the chat service in-process on top of a store and an LLM.

    It follows the remote service's contract: the user message is stored
    before generation starts, deltas are framed as they arrive, and the
    assistant message is stored before the ``done`` frame is written. A
    generation failure after the first frame produces an ``error`` frame.
    The client token, when given, is saved on both messages.

    Parameters
    ----------
    store : store.Store, optional
        Defaults to ``store.InMemory()``.
    llm : llm.LLM, optional
        Defaults to ``llm.OpenAI()``, falling back to ``llm.Echo()`` when the
        ``openai`` package is not installed.
    per_page : int, default=config.PAGE_SIZE
    context_limit : int, default=50
        Number of recent messages sent to the LLM as context.
    system_prompt : str, optional
    """

    def __init__(
        self,
        store=None,
        llm=None,
        per_page: int = PAGE_SIZE,
        context_limit: int = 50,
        system_prompt: Optional[str] = None,
    ):
        from . import llm as llm_module
        from . import store as store_module

        self.store = store if store is not None else store_module.InMemory()
        if llm is not None:
            self.llm = llm
        else:
            try:
                self.llm = llm_module.OpenAI()
            except ImportError:
                warnings.warn(
                    "chatpipe's local service is running with an Echo LLM because the "
                    "'openai' package is not installed. Install with: "
                    'pip install "chatpipe[openai]"',
                    UserWarning,
                )
                self.llm = llm_module.Echo()
        self.per_page = per_page
        self.context_limit = context_limit
        self.system_prompt = (
            system_prompt if system_prompt is not None else llm_module.DEFAULT_SYSTEM_PROMPT
        )

    @staticmethod
    def validate_message(message: Any) -> str:
        if not isinstance(message, str) or len(message) < 1:
            raise InvalidMessageError("Message cannot be empty")
        if len(message) > MAX_MESSAGE_CHARS:
            raise InvalidMessageError("Message too long")
        return message

    def stream_message(self, message, client_token=None):
        try:
            message = self.validate_message(message)
        except InvalidMessageError as e:
            raise TransportError(str(e), status_code=e.status_code) from e

        self.store.add_message(USER_ROLE, message, client_token)

        history = self.store.recent(self.context_limit)
        chat_messages = [{"role": "system", "content": self.system_prompt}] + [
            {"role": m.role, "content": m.content} for m in history
        ]
        try:
            response = self.llm.generate_response(chat_messages)
        except Exception as e:
            logger.exception("Failed to start generation")
            raise TransportError("Failed to send message", status_code=500) from e

        return self._stream(response, client_token)

    def _stream(self, response: Any, client_token: Optional[str]) -> Iterator[bytes]:
        full_response = ""
        try:
            for delta in self.llm.extract_deltas(response):
                full_response += delta
                yield encode_frame({"content": delta})
            self.store.add_message(ASSISTANT_ROLE, full_response, client_token)
        except Exception:
            logger.exception("Failed to generate response")
            yield encode_frame({"error": "Failed to generate response"})
            return
        yield encode_frame({"done": True})

    def fetch_page(self, page):
        return self.store.get_page(max(page, 1), self.per_page)

    def clear_history(self):
        self.store.clear()

    def archive_history(self):
        return self.store.archive()

    def list_archives(self):
        return self.store.list_archives()

    def restore_archive(self, archived_at):
        return self.store.unarchive(archived_at)

    def get_notes(self):
        return self.store.get_note() or Note(content="")

    def save_notes(self, content):
        if not isinstance(content, str):
            raise TransportError("Content must be a string", status_code=400)
        return self.store.save_note(content)
