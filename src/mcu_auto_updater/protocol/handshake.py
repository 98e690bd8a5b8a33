"""
Update handshake with the running MCU firmware.

Protocol:
    1. Host opens the UART (115200 8N1, raw)
    2. Host sends "UPDATE_AVAILABLE:<version>" (no terminator)
    3. Host waits up to read_timeout for a reply
    4. Device answers "ACK:<seconds>" once it is willing to be flashed;
       <seconds> is how long the host must wait before halting it
    5. No ack: repeat from 2 after retry_interval, until announce_timeout
       elapses, then fall back to default_wait
    6. Host sleeps the negotiated delay, then flashing may start

The fallback in step 5 is fail-open: an unresponsive device is still
updated, after the full default delay.
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from ..core.errors import HandshakeCancelled, SerialLinkError

logger = logging.getLogger(__name__)

ANNOUNCE_PREFIX = "UPDATE_AVAILABLE:"
ACK_PATTERN = re.compile(r"ACK:([0-9]+)")

DEFAULT_ANNOUNCE_TIMEOUT = 300.0
DEFAULT_READ_TIMEOUT = 2.0
DEFAULT_RETRY_INTERVAL = 2.0
DEFAULT_WAIT = 300


class HandshakeState(Enum):
    """Handshake session states."""
    INIT = "init"
    ANNOUNCING = "announcing"
    ACKED = "acked"
    TIMED_OUT = "timed_out"
    WAITING = "waiting"
    READY = "ready"


class Link(Protocol):
    """Timed-read serial capability used by the handshake."""

    def open(self) -> None: ...

    def close(self) -> None: ...

    def send(self, data: bytes) -> None: ...

    def read_reply(self, timeout: Optional[float] = None) -> bytes: ...


@dataclass
class HandshakeSession:
    """State for one announce/ack/wait exchange."""
    version: int
    message: bytes
    deadline: float
    state: HandshakeState = HandshakeState.INIT
    attempts: int = 0
    read_errors: int = 0
    acked: bool = False
    wait_seconds: Optional[int] = None

    @property
    def resolved(self) -> bool:
        return self.wait_seconds is not None


def build_announcement(version: int) -> bytes:
    """Return the ASCII announcement for version."""
    return f"{ANNOUNCE_PREFIX}{version}".encode("ascii")


def parse_ack(reply: bytes) -> Optional[int]:
    """
    Extract the requested wait from a device reply.

    Any content around the ACK token is ignored; replies without one
    return None.
    """
    text = reply.decode("ascii", errors="ignore")
    match = ACK_PATTERN.search(text)
    if match is None:
        return None
    return int(match.group(1))


class HandshakeProtocol:
    """
    Drives the handshake state machine over a Link.

    Args:
        link: Serial link (opened by negotiate, closed once announcing ends)
        announce_timeout: Deadline for ANNOUNCING, seconds from start
        read_timeout: Bound on each reply read
        retry_interval: Pause between unanswered announcements
        default_wait: Wait used when the deadline passes without an ack
        clock: Monotonic time source
        sleep: Blocking sleep used for pauses and the final wait
        cancel_event: Optional event; when set, the session aborts with
            HandshakeCancelled at the next suspension point
    """

    def __init__(
        self,
        link: Link,
        announce_timeout: float = DEFAULT_ANNOUNCE_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        default_wait: int = DEFAULT_WAIT,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.link = link
        self.announce_timeout = announce_timeout
        self.read_timeout = read_timeout
        self.retry_interval = retry_interval
        self.default_wait = default_wait
        self.clock = clock
        self.sleep = sleep
        self.cancel_event = cancel_event

    def _check_cancel(self, session: HandshakeSession) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise HandshakeCancelled(
                f"Handshake cancelled in state {session.state.value}"
            )

    def _pause(self, seconds: float, session: HandshakeSession) -> None:
        if seconds <= 0:
            self._check_cancel(session)
            return
        if self.cancel_event is None:
            self.sleep(seconds)
            return
        if self.cancel_event.wait(seconds):
            self._check_cancel(session)

    def _announce_once(self, session: HandshakeSession) -> Optional[int]:
        session.attempts += 1
        try:
            self.link.send(session.message)
            reply = self.link.read_reply(self.read_timeout)
        except SerialLinkError as e:
            session.read_errors += 1
            logger.debug(f"Announce attempt {session.attempts} failed: {e}")
            return None
        if not reply:
            return None
        wait = parse_ack(reply)
        if wait is None:
            logger.debug(f"Ignoring reply {reply!r}")
        return wait

    def negotiate(self, version: int) -> HandshakeSession:
        """
        Run INIT → ANNOUNCING → (ACKED | TIMED_OUT).

        Raises:
            SerialUnavailable: If the link cannot be opened.
            HandshakeCancelled: If the cancel event is set.
        """
        session = HandshakeSession(
            version=version,
            message=build_announcement(version),
            deadline=self.clock() + self.announce_timeout,
        )
        self.link.open()
        session.state = HandshakeState.ANNOUNCING
        logger.info(f"Announcing update {version} to device, awaiting ack...")

        try:
            while True:
                self._check_cancel(session)
                wait = self._announce_once(session)
                if wait is not None:
                    session.state = HandshakeState.ACKED
                    session.acked = True
                    session.wait_seconds = wait
                    logger.info(f"MCU ack received, waiting {wait} seconds before flash")
                    break
                if self.clock() >= session.deadline:
                    session.state = HandshakeState.TIMED_OUT
                    session.wait_seconds = self.default_wait
                    logger.warning(
                        f"No MCU ack after {self.announce_timeout:.0f}s, "
                        f"defaulting wait {self.default_wait} seconds"
                    )
                    break
                self._pause(self.retry_interval, session)
        finally:
            self.link.close()

        if session.read_errors:
            logger.warning(f"{session.read_errors} serial errors during announce (retried)")
        return session

    def wait(self, session: HandshakeSession) -> HandshakeSession:
        """Run WAITING → READY for a negotiated session."""
        if not session.resolved:
            raise ValueError("Session has no resolved wait; call negotiate() first")

        session.state = HandshakeState.WAITING
        logger.info(f"Sleeping {session.wait_seconds} seconds...")
        self._pause(session.wait_seconds, session)
        session.state = HandshakeState.READY
        return session

    def run(self, version: int) -> HandshakeSession:
        """Full handshake: announce, resolve the delay, then wait it out."""
        return self.wait(self.negotiate(version))
