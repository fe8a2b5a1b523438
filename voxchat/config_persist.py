"""Debounced write-back of preference changes to voxchat.conf.

voxchat.conf is a shell-style file of ``VAR="value"`` lines. Preference
changes made at runtime (wake phrase, auto-stop, mute, wake chime) are
collected for a couple of seconds and then written in one pass that keeps
comments, ordering and unrelated variables untouched.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import re
import shutil
import tempfile
import threading
from collections.abc import Callable, Iterator
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/voxchat/voxchat.conf").expanduser()
DEBOUNCE_DELAY_SECONDS = 2.0

_VAR = r"[A-Za-z_][A-Za-z0-9_]*"
_ASSIGNMENT_RE = re.compile(rf"^(?P<name>{_VAR})\s*=\s*(?P<value>.*)$")
# Shipped defaults are written as commented lines: # (default) VAR="value"
_DEFAULT_COMMENT_RE = re.compile(rf"^#\s*\(default\)\s*(?P<name>{_VAR})\s*=\s*(?P<value>.*)$")


def _strip_quotes(value: str) -> str:
    """Remove matching single or double quotes from a value."""
    value = value.strip()
    if len(value) < 2 or value[0] != value[-1] or value[0] not in "\"'":
        return value
    inner = value[1:-1]
    if value[0] == '"':
        inner = inner.replace('\\"', '"').replace("\\\\", "\\")
    return inner


def _quote_value(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def resolve_config_path(env: dict[str, str] | None = None) -> Path:
    """Return the conf file path, honouring VOXCHAT_CONFIG_FILE."""
    source = os.environ if env is None else env
    override = (source.get("VOXCHAT_CONFIG_FILE") or "").strip()
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH


def read_config_file(path: Path, logger: logging.Logger | None = None) -> dict[str, str]:
    """Parse ``VAR="value"`` assignments from a conf file.

    Missing or unreadable files yield an empty mapping.
    """
    if not path.is_file():
        return {}
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        (logger or LOGGER).warning("Failed to read config file '%s': %s", path, exc)
        return {}
    values: dict[str, str] = {}
    for raw in content.splitlines():
        line = raw.strip()
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        match = _ASSIGNMENT_RE.match(line)
        if match:
            values[match["name"]] = _strip_quotes(match["value"])
    return values


def render_config(content: str, changes: dict[str, str]) -> str:
    """Return ``content`` with ``changes`` applied.

    Assignments and ``# (default)`` lines for a changed variable are rewritten
    in place; variables that do not appear yet are appended.
    """
    pending = dict(changes)
    out: list[str] = []
    for line in content.splitlines(keepends=True):
        body = line.rstrip("\r\n")
        match = _DEFAULT_COMMENT_RE.match(body) or _ASSIGNMENT_RE.match(body)
        if match is None or match["name"] not in pending:
            out.append(line)
            continue
        name = match["name"]
        newline = line[len(body) :]
        out.append(f"{name}={_quote_value(pending.pop(name))}{newline}")
    if pending:
        if out and not out[-1].endswith("\n"):
            out.append("\n")
        out.extend(f"{name}={_quote_value(value)}\n" for name, value in pending.items())
    return "".join(out)


@contextlib.contextmanager
def _exclusive_lock(path: Path, logger: logging.Logger) -> Iterator[None]:
    """Hold an flock on ``<path>.lock`` so concurrent writers take turns."""
    lock_path = path.with_name(path.name + ".lock")
    handle = None
    try:
        handle = open(lock_path, "w")
    except OSError as exc:
        logger.warning("Could not acquire config lock: %s", exc)
    if handle is None:
        yield
        return
    with handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class ConfigPersister:
    """Queues variable updates and writes them to voxchat.conf after a pause."""

    def __init__(
        self,
        config_path: Path | None = None,
        debounce_seconds: float = DEBOUNCE_DELAY_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._debounce_seconds = debounce_seconds
        self._logger = logger or LOGGER
        self._pending_changes: dict[str, str] = {}
        self._timer: threading.Timer | None = None
        self._state_lock = threading.Lock()
        self._io_lock = threading.Lock()

    @property
    def config_path(self) -> Path:
        return self._config_path

    def update(self, var_name: str, value: str) -> None:
        """Queue ``var_name=value``; the file is written once updates go quiet."""
        with self._state_lock:
            self._pending_changes[var_name] = value
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self._debounce_seconds, self.flush_sync)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def flush_sync(self) -> None:
        """Write any queued changes now (blocking)."""
        with self._state_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            changes, self._pending_changes = self._pending_changes, {}
        if not changes:
            return
        with self._io_lock:
            try:
                self._write(changes)
            except OSError as exc:
                self._logger.error("Failed to persist config changes: %s", exc)

    def stop(self) -> None:
        self.flush_sync()

    def _write(self, changes: dict[str, str]) -> None:
        path = self._config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with _exclusive_lock(path, self._logger):
            content = ""
            if path.exists():
                content = path.read_text(encoding="utf-8")
                self._backup(path)
            rendered = render_config(content, changes)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                    tmp.write(rendered)
                os.replace(tmp_name, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        self._logger.info(
            "Persisted %d config change(s) to '%s': %s",
            len(changes),
            path,
            ", ".join(f"{name}={value!r}" for name, value in changes.items()),
        )

    def _backup(self, path: Path) -> None:
        backup = path.with_name(path.name + ".backup")
        try:
            shutil.copy2(path, backup)
            backup.chmod(0o600)
        except OSError as exc:
            self._logger.warning("Failed to create config backup: %s", exc)


# Preference key      -> conf variable               (value transform)
#   wake_phrase       -> VOXCHAT_WAKE_PHRASE
#   auto_stop_seconds -> VOXCHAT_AUTO_STOP_SECONDS     0 means off
#   muted             -> VOXCHAT_MUTED                 on/off -> true/false
#   wake_sound        -> VOXCHAT_WAKE_SOUND            on/off -> true/false
PREFERENCE_TO_CONFIG: dict[str, tuple[str, Callable[[str], str]]] = {
    "wake_phrase": ("VOXCHAT_WAKE_PHRASE", str),
    "auto_stop_seconds": ("VOXCHAT_AUTO_STOP_SECONDS", str),
    "muted": ("VOXCHAT_MUTED", lambda v: "true" if v == "on" else "false"),
    "wake_sound": ("VOXCHAT_WAKE_SOUND", lambda v: "true" if v == "on" else "false"),
}


def persist_preference(
    persister: ConfigPersister,
    preference_key: str,
    value: str,
    *,
    logger: logging.Logger | None = None,
) -> bool:
    """Queue a preference change by its logical key; False for unknown keys."""
    mapping = PREFERENCE_TO_CONFIG.get(preference_key)
    if mapping is None:
        if logger:
            logger.warning("Unknown preference key '%s', not persisting", preference_key)
        return False
    var_name, transform = mapping
    persister.update(var_name, transform(value))
    return True
