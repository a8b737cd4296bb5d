"""Control connection keep-alive during long data transfers.

While a data connection is open the control connection sits idle, and
firewalls or servers may drop it. KeepAliveMonitor is a cooperative
timer: the transfer loop calls tick() after every block, and once the
keep-alive interval has elapsed a NOOP is sent on the control connection.
A missing or negative reply only marks the control connection degraded;
the transfer itself is never interrupted.
"""

import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Callable, List

from src.ftps.commands import FTPCmd
from src.ftps.connection import ControlChannel
from src.ftps.exceptions import FTPSError, KeepAliveError
from src.ftps.reply import COMMAND_OK, Reply

logger = logging.getLogger("ftps_client.keepalive")


class KeepAlivePolicy(Enum):
    """What to do with a degraded control connection after a transfer."""
    IGNORE = "ignore"
    WARN = "warn"
    RAISE = "raise"


@dataclass
class KeepAliveStats:
    """Counters collected while a data connection was open."""
    sent: int = 0
    acknowledged: int = 0
    unacknowledged: int = 0
    negative: int = 0
    io_errors: int = 0

    @property
    def degraded(self) -> bool:
        """True if any keep-alive went unanswered, failed or was refused."""
        return bool(self.unacknowledged or self.negative or self.io_errors)


class KeepAliveMonitor:
    """Sends NOOPs on the control connection while a transfer runs."""

    def __init__(
        self,
        control: ControlChannel,
        interval: timedelta,
        reply_timeout: timedelta,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the monitor.

        Args:
            control: Control channel to ping
            interval: Time between NOOPs; zero disables the monitor
            reply_timeout: How long to wait for each NOOP reply; zero waits
                forever
            clock: Monotonic clock in seconds
        """
        self._control = control
        self._interval = interval.total_seconds()
        self._reply_timeout = reply_timeout
        self._clock = clock
        self._active = self._interval > 0
        self._last_ping = clock()
        self._received: List[Reply] = []
        self.stats = KeepAliveStats()

    @property
    def is_active(self) -> bool:
        """True until cancelled (or if the interval is zero, never)."""
        return self._active

    def tick(self) -> None:
        """Called by the transfer loop; pings once the interval elapsed."""
        if not self._active:
            return
        now = self._clock()
        if now - self._last_ping < self._interval:
            return
        self._last_ping = now
        self._ping()

    def _ping(self) -> None:
        with self._control.lock:
            try:
                self._control.send_command(FTPCmd.NOOP)
                self.stats.sent += 1
                if not self._control.wait_for_reply(self._reply_timeout):
                    # Reply stays owed; it is drained after the transfer
                    self.stats.unacknowledged += 1
                    logger.debug(
                        f"No keep-alive reply within {self._reply_timeout.total_seconds()}s"
                    )
                    return
                reply = self._control.get_reply()
            except FTPSError as e:
                self.stats.io_errors += 1
                self._active = False
                logger.warning(f"Keep-alive failed, monitoring stopped: {e}")
                return

        self._received.append(reply)
        if reply.code == COMMAND_OK:
            self.stats.acknowledged += 1

    def cancel(self) -> None:
        """Stop pinging; called when the data connection closes."""
        self._active = False

    def finish(self) -> Reply:
        """
        Collect every reply still owed and pick out the transfer result.

        The server answers the transfer command once and each NOOP once,
        but a NOOP reply and the transfer completion can arrive in either
        order. NOOP replies are 200 or negative, so the first other
        positive completion (226, 250, ...) is the transfer result. A
        failed transfer has no such reply; its result is then the last
        reply that is not a NOOP acknowledgement.

        Returns:
            The transfer completion reply
        """
        self.cancel()
        replies = list(self._received)
        owed = self.stats.sent + 1 - len(replies)
        for _ in range(owed):
            replies.append(self._control.get_reply())

        completion = next(
            (r for r in replies if r.is_completion and r.code != COMMAND_OK), None
        )
        if completion is None:
            others = [r for r in replies if r.code != COMMAND_OK]
            completion = others[-1] if others else replies[-1]
        noop_replies = [r for r in replies if r is not completion]
        self.stats.negative = sum(1 for r in noop_replies if r.is_negative)
        self.stats.acknowledged = len(noop_replies) - self.stats.negative
        return completion


def apply_policy(stats: KeepAliveStats, policy: KeepAlivePolicy) -> bool:
    """
    Surface keep-alive results once a data operation has concluded.

    Args:
        stats: Counters of the finished monitor
        policy: Reporting policy

    Returns:
        True if the control connection is degraded

    Raises:
        KeepAliveError: If degraded and the policy is RAISE
    """
    if not stats.degraded:
        if stats.sent:
            logger.debug(f"Keep-alive: {stats.acknowledged}/{stats.sent} NOOPs acknowledged")
        return False

    if policy is KeepAlivePolicy.RAISE:
        raise KeepAliveError(stats.unacknowledged + stats.negative, stats.io_errors)
    if policy is KeepAlivePolicy.WARN:
        logger.warning(
            f"Control connection degraded during transfer: {stats.unacknowledged} "
            f"unanswered, {stats.negative} refused, {stats.io_errors} I/O errors"
        )
    else:
        logger.debug(f"Ignoring degraded control connection: {stats}")
    return True
