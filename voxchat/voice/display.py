"""
Conversation view state

Holds everything the front end renders:

- transcript: user, model and error messages in arrival order
- input field: live interim transcript while the user speaks
- notice: short-lived status banner (confirmations, inactivity pause)
- error banner: the last recognition error message
- blackboard: a one-line status mirror, also used for chat failures

Renderers subclass ``ConversationView`` and override ``render`` (the console
front end does), or poll the attributes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from voxchat.voice.chat import Citation
    from voxchat.voice.timers import TimerService

LOGGER = logging.getLogger(__name__)


@dataclass
class DisplayMessage:
    role: Literal["user", "model", "error"]
    text: str
    citations: list[Citation] = field(default_factory=list)


class ConversationView:
    """Mutable view model for the chat front end."""

    def __init__(
        self,
        timers: TimerService,
        confirmation_seconds: float = 4.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timers = timers
        self.confirmation_seconds = confirmation_seconds
        self.logger = logger or LOGGER
        self.messages: list[DisplayMessage] = []
        self.input_text = ""
        self.notice: str | None = None
        self.error: str | None = None
        self.blackboard = ""
        self.busy = False

    def add_message(
        self,
        role: Literal["user", "model", "error"],
        text: str,
        citations: list[Citation] | None = None,
    ) -> DisplayMessage:
        message = DisplayMessage(role=role, text=text, citations=list(citations or []))
        self.messages.append(message)
        self.render("message")
        return message

    def set_input_text(self, text: str) -> None:
        self.input_text = text
        self.render("input")

    def set_busy(self, busy: bool) -> None:
        self.busy = busy
        self.render("busy")

    def show_notice(self, text: str) -> None:
        self.notice = text
        self.render("notice")

    def clear_notice(self) -> None:
        if self.notice is None:
            return
        self.notice = None
        self.render("notice")

    def show_confirmation(self, text: str) -> None:
        """Show a notice that dismisses itself after ``confirmation_seconds``."""
        self.show_notice(text)
        self.timers.confirmation.arm(self.confirmation_seconds, self.clear_notice)

    def show_error(self, text: str) -> None:
        self.error = text
        self.write_blackboard(text)
        self.render("error")

    def clear_error(self) -> None:
        if self.error is None:
            return
        self.error = None
        self.render("error")

    def write_blackboard(self, text: str) -> None:
        self.blackboard = text
        self.render("blackboard")

    def render(self, part: str) -> None:
        """Hook for front ends; called after every state change."""
