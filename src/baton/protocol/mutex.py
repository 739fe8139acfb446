"""Merge mutex: a time-boxed lease over the shared ``default`` workspace.

The lease is a claim on ``workspace://<project>/default`` staked with a short
TTL. It is purely cooperative. The claims service does not serialize writers
to the default workspace; it only records who staked what. Exclusive access
holds only while every writer follows the same stake, act, release
discipline, and an expired TTL hands the lease to the next staker whether or
not the previous holder finished.

Contention is retried on the ladder ``2, 4, 8, 15`` seconds (the last value
repeats) with up to 30% jitter either way. Between waits the ``coord:merge``
announcement label is polled; a new merge announcement means the lease was
probably just released, so the next stake is attempted immediately.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from .. import exec, log
from . import shell

BACKOFF_LADDER = (2, 4, 8, 15)
JITTER_FRACTION = 0.3
MERGE_LABEL = "coord:merge"
HISTORY_WINDOW = "2 minutes ago"


class MergeMutexTimeout(RuntimeError):
    """Raised when the lease cannot be acquired within the time budget."""

    def __init__(self, project: str, timeout_seconds: float, attempts: int) -> None:
        self.project = project
        self.timeout_seconds = timeout_seconds
        self.attempts = attempts
        super().__init__(
            f"merge mutex timeout after {timeout_seconds:g}s ({attempts} attempt(s)): "
            f"another agent holds {default_workspace_uri(project)}"
        )


def default_workspace_uri(project: str) -> str:
    return f"workspace://{project}/default"


def base_delay(attempt: int) -> int:
    """Return the un-jittered wait after failed attempt ``attempt`` (0-based).

    Example:
        >>> [base_delay(n) for n in range(6)]
        [2, 4, 8, 15, 15, 15]
    """
    return BACKOFF_LADDER[min(attempt, len(BACKOFF_LADDER) - 1)]


def jittered_delay(base: float, rng: random.Random) -> float:
    """Perturb ``base`` by up to ``JITTER_FRACTION`` either way, never below 0."""
    spread = base * JITTER_FRACTION
    return max(0.0, base + rng.uniform(-spread, spread))


class MergeMutex:
    """Stake/retry/release protocol for the merge lease.

    ``sleep``, ``clock``, and ``rng`` are injectable so the retry loop can be
    driven without real waits.
    """

    def __init__(
        self,
        agent: str,
        project: str,
        memo: str,
        *,
        ttl_seconds: int = 120,
        timeout_seconds: float = 300.0,
        runner: exec.CommandRunner | None = None,
        command_timeout_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        shell.validate_identifier("agent", agent)
        shell.validate_identifier("project", project)
        self.agent = agent
        self.project = project
        self.memo = memo
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self._runner = runner
        self._command_timeout_seconds = command_timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self.attempts = 0

    @property
    def uri(self) -> str:
        return default_workspace_uri(self.project)

    def _request(self, argv: list[str]) -> exec.CommandRequest:
        return exec.CommandRequest(argv=tuple(argv), timeout_seconds=self._command_timeout_seconds)

    def _stake(self) -> bool:
        argv = [
            "bus",
            "claims",
            "stake",
            "--agent",
            self.agent,
            self.uri,
            "--ttl",
            str(self.ttl_seconds),
            "-m",
            self.memo,
        ]
        result = exec.run_with_runner(self._request(argv), runner=self._runner)
        if result is None:
            raise exec.CommandExecutionError(
                request=self._request(argv), detail="missing required command: bus"
            )
        return result.ok

    def _latest_merge_announcement(self) -> str | None:
        argv = [
            "bus",
            "history",
            self.project,
            "-L",
            MERGE_LABEL,
            "-n",
            "1",
            "--since",
            HISTORY_WINDOW,
        ]
        result = exec.run_best_effort(self._request(argv), runner=self._runner)
        if result is None or not result.ok:
            return None
        return result.stdout.strip() or None

    def acquire(self) -> None:
        """Stake the lease, retrying until it is held or the budget runs out.

        Raises:
            MergeMutexTimeout: When the budget elapses without a successful stake.
            CommandExecutionError: When the claims tool is missing.
        """
        started = self._clock()
        last_announcement: str | None = None
        baseline_read = False
        waits = 0
        while True:
            self.attempts += 1
            if self._stake():
                log.debug(f"merge mutex acquired: {self.uri} ({self.memo})")
                return

            elapsed = self._clock() - started
            if elapsed >= self.timeout_seconds:
                raise MergeMutexTimeout(self.project, self.timeout_seconds, self.attempts)

            # The first failed stake only records the baseline announcement.
            announcement = self._latest_merge_announcement()
            is_new = (
                baseline_read
                and announcement is not None
                and announcement != last_announcement
            )
            baseline_read = True
            if announcement is not None:
                last_announcement = announcement
            if is_new:
                log.warning(
                    f"merge mutex held by another agent; {MERGE_LABEL} announcement seen, "
                    f"retrying now (attempt {self.attempts})"
                )
                continue

            delay = jittered_delay(base_delay(waits), self._rng)
            waits += 1
            log.warning(
                f"merge mutex held by another agent, retrying in {delay:.1f}s "
                f"(attempt {self.attempts})"
            )
            self._sleep(min(delay, self.timeout_seconds - elapsed))

    def release(self) -> None:
        """Release the lease; the result is deliberately ignored."""
        argv = ["bus", "claims", "release", "--agent", self.agent, self.uri]
        _ = exec.run_best_effort(self._request(argv), runner=self._runner)
        log.debug(f"merge mutex released: {self.uri}")


@contextmanager
def merge_mutex(mutex: MergeMutex) -> Iterator[MergeMutex]:
    """Hold ``mutex`` for the body; it is released on every exit path.

    Release also runs when acquisition itself fails or is interrupted, since
    a stake may have landed after the last observed failure.
    """
    try:
        mutex.acquire()
        yield mutex
    finally:
        mutex.release()
