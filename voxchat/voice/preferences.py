"""Runtime voice preferences for voxchat.

Preferences managed:
- Wake phrase (non-empty, whitespace collapsed)
- Auto-stop duration in seconds (0 = off)
- Speaker mute
- Wake chime (on/off)

Values start from the loaded ``VoiceConfig``. Every change is queued for
persistence to voxchat.conf and reported to registered listeners.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from voxchat.config_persist import persist_preference
from voxchat.utils import collapse_whitespace

if TYPE_CHECKING:
    from voxchat.config_persist import ConfigPersister
    from voxchat.voice.config import VoiceConfig

LOGGER = logging.getLogger(__name__)


class VoicePreferences:
    """Holds the user-adjustable voice settings and persists changes."""

    def __init__(
        self,
        config: VoiceConfig,
        persister: ConfigPersister | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.persister = persister
        self.logger = logger or LOGGER

        self._wake_phrase = collapse_whitespace(config.wake_phrase)
        if not self._wake_phrase:
            raise ValueError("Wake phrase must not be empty")
        self._auto_stop_seconds = max(0, int(config.auto_stop_seconds))
        self._muted = bool(config.muted)
        self._wake_sound = bool(config.wake_sound)

        self._on_muted_changed: Callable[[bool], None] | None = None
        self._on_changed: Callable[[str, object], None] | None = None

    # ========================================================================
    # Callbacks
    # ========================================================================

    def set_muted_callback(self, callback: Callable[[bool], None]) -> None:
        """Set callback to invoke when the speaker mute flag changes."""
        self._on_muted_changed = callback

    def set_changed_callback(self, callback: Callable[[str, object], None]) -> None:
        """Set callback to invoke with (key, value) after any preference change."""
        self._on_changed = callback

    # ========================================================================
    # Accessors
    # ========================================================================

    @property
    def wake_phrase(self) -> str:
        return self._wake_phrase

    @property
    def auto_stop_seconds(self) -> int:
        return self._auto_stop_seconds

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def wake_sound(self) -> bool:
        return self._wake_sound

    # ========================================================================
    # Mutators
    # ========================================================================

    def set_wake_phrase(self, phrase: str) -> None:
        normalized = collapse_whitespace(phrase)
        if not normalized:
            raise ValueError("Wake phrase must not be empty")
        if normalized == self._wake_phrase:
            return
        self._wake_phrase = normalized
        self._persist("wake_phrase", normalized)
        self._notify("wake_phrase", normalized)

    def set_auto_stop_seconds(self, seconds: int) -> None:
        value = int(seconds)
        if value < 0:
            raise ValueError("Auto-stop duration cannot be negative")
        if value == self._auto_stop_seconds:
            return
        self._auto_stop_seconds = value
        self._persist("auto_stop_seconds", str(value))
        self._notify("auto_stop_seconds", value)

    def set_muted(self, muted: bool) -> None:
        if bool(muted) == self._muted:
            return
        self._muted = bool(muted)
        self._persist("muted", "on" if self._muted else "off")
        if self._on_muted_changed:
            self._on_muted_changed(self._muted)
        self._notify("muted", self._muted)

    def set_wake_sound(self, enabled: bool) -> None:
        if bool(enabled) == self._wake_sound:
            return
        self._wake_sound = bool(enabled)
        self._persist("wake_sound", "on" if self._wake_sound else "off")
        self._notify("wake_sound", self._wake_sound)

    def _persist(self, key: str, value: str) -> None:
        if self.persister is None:
            return
        persist_preference(self.persister, key, value, logger=self.logger)

    def _notify(self, key: str, value: object) -> None:
        self.logger.debug("[preferences] %s -> %r", key, value)
        if self._on_changed:
            self._on_changed(key, value)
