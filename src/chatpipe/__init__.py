"""
The main entrypoint for the chatpipe package.

This module contains the ``Assistant`` class, which wires the message
pipeline's pillars together: the transport to the chat service, the
conversation controller with its optimistic ledger and page cache, the
history materializer used for export, the notes autosave channel and the
audio cues.
"""

from typing import List, Optional

from . import api, cues
from .controller import ConversationController
from .history import HistoryMaterializer, export_filename, format_transcript
from .models import ConversationView, Message
from .notes import NotesAutosave

__version__ = "0.1.0"


class Assistant:
    """
    Client for a conversational assistant with optimistic, streamed replies.

    The constructor uses concrete default implementations, so
    ``Assistant()`` talks to the service at ``config.BASE_URL``; every pillar
    can be replaced.
    """

    def __init__(
        self,
        api: Optional["api.Api"] = None,
        cues: Optional["cues.Cues"] = None,
        preferences: Optional["cues.Preferences"] = None,
        notes_delay: Optional[float] = None,
        correlate: bool = True,
    ) -> None:
        """
        Initialize the assistant client with configurable pillars.

        Parameters
        ----------
        api : api.Api, optional
            Transport to the chat service. Defaults to api.Http().
            Use api.Local() to run the service in-process.
        cues : cues.Cues, optional
            Audio cue player. Defaults to cues.Silent().
        preferences : cues.Preferences, optional
            Client-local settings. Defaults to the ones saved in
            ``config.PREFERENCES_PATH``.
        notes_delay : float, optional
            Quiet window of the notes autosave, in seconds. Defaults to
            ``config.NOTES_DELAY``.
        correlate : bool, default=True
            Attach a correlation token to every sent message.

        Examples
        --------
        Against a running service:

        >>> assistant = Assistant()

        Fully in-process:

        >>> from chatpipe import api, llm, store
        >>> assistant = Assistant(api=api.Local(store=store.InMemory(), llm=llm.Echo()))
        """
        api_module = globals()["api"]
        cues_module = globals()["cues"]

        self.api = api if api is not None else api_module.Http()
        self.preferences = (
            preferences if preferences is not None else cues_module.Preferences.load()
        )
        self.cues = cues if cues is not None else cues_module.Silent()
        self.cues.enabled = self.preferences.sound_enabled

        self.controller = ConversationController(
            self.api, cues=self.cues, correlate=correlate
        )
        self.history = HistoryMaterializer(self.api)
        if notes_delay is None:
            self.notes = NotesAutosave(self.api)
        else:
            self.notes = NotesAutosave(self.api, delay=notes_delay)

    def send(self, text: str) -> bool:
        return self.controller.send(text)

    def view(self) -> ConversationView:
        return self.controller.view()

    def export_messages(self) -> List[Message]:
        """The complete history, oldest first."""
        return self.history.materialize()

    def export_transcript(self, **kwargs) -> str:
        return format_transcript(self.history.materialize(), **kwargs)

    def set_sound_enabled(self, enabled: bool, save: bool = True) -> None:
        self.preferences.sound_enabled = enabled
        self.cues.enabled = enabled
        if save:
            self.preferences.save()


__all__ = [
    "Assistant",
    "ConversationController",
    "ConversationView",
    "HistoryMaterializer",
    "Message",
    "NotesAutosave",
    "export_filename",
    "format_transcript",
]
