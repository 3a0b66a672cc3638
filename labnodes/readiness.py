"""Boot readiness detection for node control planes.

A running container does not mean the network OS inside is ready to take
configuration. Drivers gate post-deploy provisioning on a bounded poll of
in-container introspection commands.

The poll is a small state machine. Each non-terminal state owns one
``CommandProbe``; the poller stays in a state until its probe passes, then
advances to the next one:

    WAITING_MGMT_PROCESS -> WAITING_COMMIT -> READY

TIMED_OUT is terminal and is entered from either waiting state when the
deadline expires or the caller cancels.

A probe passes when the command runs, writes nothing to stderr and its
stdout contains the probe's marker. A runtime failure to run the command is
treated exactly like "not ready yet": transient exec errors and a booting
control plane look the same from here, and only the overall deadline turns
either into a failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

from labnodes.config import settings
from labnodes.errors import ContainerRuntimeError, ReadyTimeoutError
from labnodes.metrics import readiness_attempts

if TYPE_CHECKING:
    from labnodes.runtime.base import ContainerRuntime


logger = logging.getLogger(__name__)


class ReadyState(str, Enum):
    """States of the readiness poll."""
    WAITING_MGMT_PROCESS = "waiting_mgmt_process"
    WAITING_COMMIT = "waiting_commit"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass
class ReadinessResult:
    """Result of a readiness probe check."""

    is_ready: bool
    message: str = ""


@dataclass
class CommandProbe:
    """Run a command in the container and look for a marker in its output."""

    command: list[str]
    marker: str
    description: str = ""

    async def check(self, runtime: "ContainerRuntime", container: str) -> ReadinessResult:
        try:
            result = await runtime.exec(container, self.command)
        except ContainerRuntimeError as e:
            return ReadinessResult(is_ready=False, message=f"exec failed: {e}")

        if result.stderr:
            return ReadinessResult(
                is_ready=False,
                message=f"error output: {result.stderr_text.strip()}",
            )

        if self.marker not in result.stdout_text:
            return ReadinessResult(
                is_ready=False,
                message=f"{self.description or 'probe'} not yet {self.marker}",
            )

        return ReadinessResult(is_ready=True, message=f"{self.description or 'probe'} {self.marker}")


@dataclass
class ReadinessStage:
    """A poll state and the probe that must pass to leave it."""
    state: ReadyState
    probe: CommandProbe


@dataclass
class ReadinessPoller:
    """Poll a container through ordered stages until ready or the deadline.

    Args:
        runtime: Runtime used to exec the probe commands
        container: Container name to probe
        stages: Ordered stages; passing the last one means READY
        timeout: Deadline in seconds for the whole wait
        interval: Delay between failed attempts
        log_name: Node name used in log messages and errors
        kind: Node kind used as a metrics label
    """

    runtime: "ContainerRuntime"
    container: str
    stages: list[ReadinessStage]
    timeout: Optional[float] = None
    interval: Optional[float] = None
    log_name: str = ""
    kind: str = ""
    state: ReadyState = field(init=False)
    attempts: int = field(default=0, init=False)
    last_result: Optional[ReadinessResult] = field(default=None, init=False)

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError("readiness poller needs at least one stage")
        if self.timeout is None:
            self.timeout = settings.ready_timeout
        if self.interval is None:
            self.interval = settings.ready_retry_interval
        self.state = self.stages[0].state

    def _stage(self) -> ReadinessStage | None:
        for stage in self.stages:
            if stage.state == self.state:
                return stage
        return None

    def _advance(self) -> None:
        states = [stage.state for stage in self.stages]
        position = states.index(self.state)
        if position + 1 < len(states):
            self.state = states[position + 1]
        else:
            self.state = ReadyState.READY

    async def wait(self) -> None:
        """Block until every stage has passed.

        Raises:
            ReadyTimeoutError: the deadline expired first
            asyncio.CancelledError: the caller cancelled the wait
        """
        name = self.log_name or self.container
        logger.debug(f"Waiting for node {name} to boot (timeout {self.timeout}s)")

        try:
            async with asyncio.timeout(self.timeout):
                while self.state != ReadyState.READY:
                    stage = self._stage()
                    self.attempts += 1
                    result = await stage.probe.check(self.runtime, self.container)
                    self.last_result = result

                    if result.is_ready:
                        readiness_attempts.labels(kind=self.kind, outcome="passed").inc()
                        logger.debug(f"Node {name}: {result.message}")
                        self._advance()
                        continue

                    readiness_attempts.labels(kind=self.kind, outcome="not_ready").inc()
                    if self.state == ReadyState.WAITING_COMMIT:
                        logger.debug(f"Node {name} not yet ready: {result.message}")
                    await asyncio.sleep(self.interval)
        except TimeoutError:
            stuck_in = self.state
            self.state = ReadyState.TIMED_OUT
            readiness_attempts.labels(kind=self.kind, outcome="timed_out").inc()
            detail = self.last_result.message if self.last_result else "no probe completed"
            raise ReadyTimeoutError(
                f"timed out after {self.timeout}s waiting for node to boot: {detail}",
                self.log_name or None,
                state=stuck_in.value,
            ) from None
        except asyncio.CancelledError:
            self.state = ReadyState.TIMED_OUT
            raise

        logger.debug(f"Node {name} booted after {self.attempts} probe attempts")

