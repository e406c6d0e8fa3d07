"""
Keyboard trigger source.

Puts the controlling terminal into unbuffered raw mode while at least one
keyboard source is running. All sources on a terminal share one reader
thread that hands every decoded key press to each of them. Ctrl+C always
interrupts the process and never counts as an activation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import select
import signal
import sys
import termios
import threading
import tty
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, TextIO

from common.errors import DeviceUnavailableError

from .base import TriggerSource
from .models import KeyboardTriggerConfig, TriggerKind

logger = logging.getLogger(__name__)

_CSI_KEYS = {"A": "up", "B": "down", "C": "right", "D": "left", "H": "home", "F": "end"}
_CONTROL_KEYS = {0x09: "tab", 0x0A: "enter", 0x0D: "return", 0x08: "backspace", 0x7F: "backspace", 0x20: "space"}


@dataclass(frozen=True)
class KeyPress:
    name: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False

    @property
    def is_interrupt(self) -> bool:
        return self.ctrl and self.name == "c"


def _decode_char(code: int, alt: bool = False) -> KeyPress:
    if code in _CONTROL_KEYS:
        return KeyPress(_CONTROL_KEYS[code], alt=alt)
    if 1 <= code <= 26:
        return KeyPress(chr(code + 0x60), ctrl=True, alt=alt)
    char = chr(code)
    if char.isalpha() and char.isupper():
        return KeyPress(char.lower(), shift=True, alt=alt)
    return KeyPress(char, alt=alt)


def parse_keypress(data: bytes) -> List[KeyPress]:
    """Decode a chunk read from a raw-mode terminal into key presses."""
    presses: List[KeyPress] = []
    i = 0
    while i < len(data):
        code = data[i]
        if code == 0x1B:
            nxt = data[i + 1] if i + 1 < len(data) else None
            if nxt in (ord("["), ord("O")) and i + 2 < len(data):
                final = chr(data[i + 2])
                presses.append(KeyPress(_CSI_KEYS.get(final, f"escape[{final}")))
                i += 3
                continue
            if nxt is not None and nxt != 0x1B:
                presses.append(_decode_char(nxt, alt=True))
                i += 2
                continue
            presses.append(KeyPress("escape"))
            i += 1
            continue
        if code >= 0x80:
            # Multi-byte UTF-8 sequence, take the rest of the chunk
            for char in data[i:].decode("utf-8", errors="ignore"):
                presses.append(KeyPress(char))
            break
        presses.append(_decode_char(code))
        i += 1
    return presses


def _interrupt_process() -> None:
    os.kill(os.getpid(), signal.SIGINT)


class ConsoleDispatcher:
    """
    Shared raw-mode reader for one terminal file descriptor.

    Every keyboard source on the same terminal subscribes here. The first
    subscriber saves the terminal attributes and starts the reader thread;
    the last one restores them. Each decoded key press is handed to every
    subscriber.
    """

    def __init__(self, fd: int):
        self.fd = fd
        self._subscribers: List["KeyboardTriggerSource"] = []
        self._saved_attrs: Optional[List[Any]] = None
        self._reader: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def subscribers(self) -> List["KeyboardTriggerSource"]:
        with _dispatchers_lock:
            return list(self._subscribers)

    def _enter_raw_mode(self) -> None:
        self._saved_attrs = termios.tcgetattr(self.fd)
        tty.setcbreak(self.fd, termios.TCSANOW)
        attrs = termios.tcgetattr(self.fd)
        # Deliver Ctrl+C / Ctrl+S as bytes instead of signals / flow control
        attrs[tty.LFLAG] &= ~termios.ISIG
        attrs[tty.IFLAG] &= ~termios.IXON
        termios.tcsetattr(self.fd, termios.TCSANOW, attrs)

    def _restore(self) -> None:
        saved, self._saved_attrs = self._saved_attrs, None
        if saved is None:
            return
        try:
            termios.tcsetattr(self.fd, termios.TCSADRAIN, saved)
        except termios.error as e:
            logger.warning(f"[keyboard] Could not restore terminal state: {e}")

    def _add(self, source: "KeyboardTriggerSource") -> None:
        if source in self._subscribers:
            return
        if not self._subscribers:
            self._enter_raw_mode()
            self._stop_event.clear()
            self._reader = threading.Thread(
                target=self._read_loop,
                name=f"keyboard-console-{self.fd}",
                daemon=True,
            )
            self._reader.start()
        self._subscribers.append(source)

    def _remove(self, source: "KeyboardTriggerSource") -> Optional[threading.Thread]:
        """Drop ``source``; returns the reader to join once nobody is left."""
        if source not in self._subscribers:
            return None
        self._subscribers.remove(source)
        if self._subscribers:
            return None
        self._stop_event.set()
        self._restore()
        reader, self._reader = self._reader, None
        return reader

    def dispatch(self, data: bytes) -> None:
        subscribers = self.subscribers
        if not subscribers:
            return
        for press in parse_keypress(data):
            if press.is_interrupt:
                logger.info("[keyboard] Ctrl+C received, interrupting")
                subscribers[0]._on_interrupt()
                return
            for source in subscribers:
                source.handle_press(press)

    def _read_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                ready, _, _ = select.select([self.fd], [], [], 0.1)
                if not ready or self._stop_event.is_set():
                    continue
                data = os.read(self.fd, 64)
            except OSError as e:
                logger.error(f"[keyboard] Reading keyboard input failed: {e}")
                return
            if not data:
                return
            self.dispatch(data)


# One dispatcher per terminal fd, alive while it has subscribers
_dispatchers: Dict[int, ConsoleDispatcher] = {}
_dispatchers_lock = threading.RLock()


def subscribe_console(fd: int, source: "KeyboardTriggerSource") -> ConsoleDispatcher:
    with _dispatchers_lock:
        dispatcher = _dispatchers.get(fd)
        if dispatcher is None:
            dispatcher = ConsoleDispatcher(fd)
            _dispatchers[fd] = dispatcher
        try:
            dispatcher._add(source)
        except BaseException:
            if not dispatcher._subscribers:
                _dispatchers.pop(fd, None)
            raise
        return dispatcher


def unsubscribe_console(fd: int, source: "KeyboardTriggerSource") -> Optional[threading.Thread]:
    with _dispatchers_lock:
        dispatcher = _dispatchers.get(fd)
        if dispatcher is None:
            return None
        reader = dispatcher._remove(source)
        if not dispatcher._subscribers:
            _dispatchers.pop(fd, None)
        return reader


class KeyboardTriggerSource(TriggerSource):
    """Fires when the configured key and modifiers are pressed."""

    kind = TriggerKind.KEYBOARD

    def __init__(
        self,
        trigger_id: str,
        config: KeyboardTriggerConfig,
        stream: Optional[TextIO] = None,
        on_interrupt: Optional[Callable[[], None]] = None,
    ):
        super().__init__(trigger_id)
        self.config = config
        self._stream = stream or sys.stdin
        self._on_interrupt = on_interrupt or _interrupt_process
        self._fd: Optional[int] = None

    async def _open(self) -> None:
        try:
            fd = self._stream.fileno()
        except (AttributeError, ValueError, OSError) as e:
            raise DeviceUnavailableError(f"Keyboard input has no file descriptor: {e}") from e
        if not os.isatty(fd):
            raise DeviceUnavailableError("Keyboard trigger requires an interactive terminal")

        subscribe_console(fd, self)
        self._fd = fd
        logger.info(f"[keyboard] Trigger {self.trigger_id} listening: press {self._describe_combo()} to mint")

    async def _close(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        reader = unsubscribe_console(fd, self)
        if reader is not None and reader is not threading.current_thread():
            await asyncio.to_thread(reader.join, 1.0)

    def matches(self, press: KeyPress) -> bool:
        mods = self.config.modifiers
        return (
            press.name == self.config.key
            and (not mods.shift or press.shift)
            and (not mods.ctrl or press.ctrl)
            and (not mods.alt or press.alt)
        )

    def handle_press(self, press: KeyPress) -> None:
        if self.matches(press):
            logger.info(f"[keyboard] Trigger {self.trigger_id} activated")
            self._emit()

    def handle_input(self, data: bytes) -> None:
        for press in parse_keypress(data):
            if press.is_interrupt:
                logger.info("[keyboard] Ctrl+C received, interrupting")
                self._on_interrupt()
                return
            self.handle_press(press)

    def _describe_combo(self) -> str:
        mods = self.config.modifiers
        parts = [name for name, on in (("Ctrl", mods.ctrl), ("Alt", mods.alt), ("Shift", mods.shift)) if on]
        return " + ".join(parts + [repr(self.config.key)])

    def describe(self) -> Dict[str, Any]:
        data = super().describe()
        data["key"] = self._describe_combo()
        return data
