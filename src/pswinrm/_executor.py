# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

import asyncio
import dataclasses
import datetime
import logging
import time
import typing as t
import uuid
import weakref

from ._clixml import parse_clixml, parse_error_stream
from ._exceptions import (
    CommandTimedOut,
    InvalidInvocationState,
    InvocationNotFound,
    PSRemotingError,
    SessionBusy,
    SessionNotOpened,
    SignalFailed,
    TransportFailure,
)
from ._output import ErrorParser, OutputParser, parse_command_output
from ._script import build_script
from ._types import (
    CommandOutput,
    InvocationState,
    InvokeCommandParams,
    SessionAvailability,
    SessionInfo,
    SessionState,
    SignalCode,
    _utc_now,
)

log = logging.getLogger(__name__)


class Transport(t.Protocol):
    """The WinRM shell transport of a session.

    The transport is a single owner resource, the executor only calls it
    while holding the lock it keeps for each transport.
    """

    async def execute_command(
        self,
        shell_id: str,
        script: str,
    ) -> str:
        """Start the script in the shell and return the command id."""
        ...  # pragma: nocover

    async def receive_output(
        self,
        shell_id: str,
        command_id: str,
    ) -> t.Tuple[str, str, bool]:
        """Get the new stdout, stderr and whether the command is done."""
        ...  # pragma: nocover

    async def signal_command(
        self,
        shell_id: str,
        command_id: str,
        signal: SignalCode,
    ) -> None:
        ...  # pragma: nocover


class SessionDirectory(t.Protocol):
    """Tracks the remoting sessions and their busy state.

    Every lookup raises SessionNotFound for an unknown session id.
    """

    def get_session(self, session_id: str) -> SessionInfo:
        ...  # pragma: nocover

    def get_transport(self, session_id: str) -> Transport:
        ...  # pragma: nocover

    def get_shell_handle(self, session_id: str) -> str:
        ...  # pragma: nocover

    def mark_busy(self, session_id: str, invocation_id: str) -> None:
        ...  # pragma: nocover

    def mark_available(self, session_id: str, invocation_id: str) -> None:
        ...  # pragma: nocover

    async def disconnect_session(self, session_id: str) -> None:
        ...  # pragma: nocover


class InvocationSummary(t.NamedTuple):
    invocation_id: str
    session_id: str
    state: InvocationState


@dataclasses.dataclass
class _Invocation:
    invocation_id: str
    session_id: str
    command_id: str
    command: str
    state: InvocationState
    started_at: datetime.datetime
    timeout_sec: int
    as_job: bool
    cancel: asyncio.Event


class PollTimer:
    """Interval timer for output polling.

    The timeout is only checked when expired is called, once per poll tick,
    so the command can overrun the timeout by up to one interval plus the
    time spent in the transport. Setting the cancel event wakes up a pending
    wait straight away, once set every later wait runs for the full interval.

    Args:
        interval: The seconds to wait between polls.
        timeout: The seconds after which the timer is expired, 0 or None
            for no timeout.
        cancel: The cancellation token, a new event is created if not set.
    """

    def __init__(
        self,
        interval: float,
        timeout: t.Optional[float] = None,
        cancel: t.Optional[asyncio.Event] = None,
    ) -> None:
        self.interval = interval
        self.timeout = timeout or None
        self.cancel = cancel or asyncio.Event()
        self._start = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._start

    @property
    def expired(self) -> bool:
        return self.timeout is not None and self.elapsed > self.timeout

    @property
    def cancelled(self) -> bool:
        return self.cancel.is_set()

    async def wait(self) -> None:
        """Wait for one interval or until the timer is cancelled."""
        if self.cancel.is_set():
            await asyncio.sleep(self.interval)
            return

        try:
            await asyncio.wait_for(self.cancel.wait(), self.interval)
        except asyncio.TimeoutError:
            pass


def _truncate(value: str, length: int) -> str:
    return value if len(value) <= length else f"{value[:length]}..."


class PSCommandExecutor:
    """Runs PowerShell commands over the sessions of a session directory.

    The executor tracks every invocation it starts until the output has been
    collected. The tracking table is owned by the executor instance and is
    not safe to share across event loops.

    Args:
        poll_interval: The seconds to wait between output polls.
        output_parser: Parses CLIXML stdout into output objects.
        error_parser: Parses stderr into error records.
    """

    def __init__(
        self,
        *,
        poll_interval: float = 0.05,
        output_parser: OutputParser = parse_clixml,
        error_parser: ErrorParser = parse_error_stream,
    ) -> None:
        if poll_interval < 0:
            raise ValueError(f"poll_interval must be 0 or greater, got {poll_interval}")

        self.poll_interval = poll_interval
        self.output_parser = output_parser
        self.error_parser = error_parser
        self._invocations: t.Dict[str, _Invocation] = {}
        self._locks: weakref.WeakKeyDictionary[Transport, asyncio.Lock] = weakref.WeakKeyDictionary()

    def _get_lock(
        self,
        transport: Transport,
    ) -> asyncio.Lock:
        lock = self._locks.get(transport)
        if lock is None:
            lock = self._locks[transport] = asyncio.Lock()

        return lock

    async def _signal_quietly(
        self,
        transport: Transport,
        shell_id: str,
        command_id: str,
        signal: SignalCode,
    ) -> None:
        try:
            async with self._get_lock(transport):
                await transport.signal_command(shell_id, command_id, signal)
        except Exception as e:
            log.debug("Failed to send %s signal to command %s: %s", signal.name, command_id, e)

    async def invoke(
        self,
        directory: SessionDirectory,
        params: InvokeCommandParams,
    ) -> CommandOutput:
        """Invoke a command on a session.

        The command is run in the foreground by default, the output is
        collected before returning and the session is marked available again.
        A job returns straight away in the Running state and the output is
        retrieved with receive_job. With invoke_and_disconnect the session is
        disconnected after the command starts and no output is collected.

        Args:
            directory: The session directory that owns the session.
            params: The invocation parameters, session_id must be set.

        Returns:
            CommandOutput: The result of the command.
        """
        session_id = params.session_id
        if not session_id:
            raise ValueError("Session ID is required")

        session = directory.get_session(session_id)
        if session.state != SessionState.OPENED:
            raise SessionNotOpened(session_id, session.state)

        if session.availability == SessionAvailability.BUSY and not params.as_job:
            raise SessionBusy(session_id)

        invocation_id = str(uuid.uuid4())
        script = build_script(params)
        command = params.script_block or script

        transport = directory.get_transport(session_id)
        shell_id = directory.get_shell_handle(session_id)

        directory.mark_busy(session_id, invocation_id)
        started_at = _utc_now()

        if log.isEnabledFor(logging.DEBUG):
            log.debug("Invoking command %s on session %s: %s", invocation_id, session_id, _truncate(script, 200))

        try:
            async with self._get_lock(transport):
                command_id = await transport.execute_command(shell_id, script)
        except Exception as e:
            directory.mark_available(session_id, invocation_id)
            if isinstance(e, PSRemotingError):
                raise
            raise TransportFailure(f"Failed to start command on session '{session_id}': {e}") from e

        invocation = _Invocation(
            invocation_id=invocation_id,
            session_id=session_id,
            command_id=command_id,
            command=command,
            state=InvocationState.RUNNING,
            started_at=started_at,
            timeout_sec=params.timeout_sec,
            as_job=params.as_job,
            cancel=asyncio.Event(),
        )
        self._invocations[invocation_id] = invocation

        if params.invoke_and_disconnect:
            log.info("Invoke-and-disconnect: disconnecting session %s after starting command", session_id)
            try:
                await directory.disconnect_session(session_id)
            except Exception as e:
                self._invocations.pop(invocation_id, None)
                await self._signal_quietly(transport, shell_id, command_id, SignalCode.TERMINATE)
                directory.mark_available(session_id, invocation_id)
                if isinstance(e, PSRemotingError):
                    raise
                raise TransportFailure(f"Failed to disconnect session '{session_id}': {e}") from e

            invocation.state = InvocationState.DISCONNECTED

            return CommandOutput(
                invocation_id=invocation_id,
                session_id=session_id,
                command=command,
                state=InvocationState.DISCONNECTED,
                started_at=started_at,
            )

        if params.as_job:
            log.debug("Command %s started as a job on session %s", invocation_id, session_id)
            return CommandOutput(
                invocation_id=invocation_id,
                session_id=session_id,
                command=command,
                state=InvocationState.RUNNING,
                started_at=started_at,
            )

        try:
            return await self.collect_output(
                transport,
                shell_id,
                command_id,
                session_id=session_id,
                invocation_id=invocation_id,
                command=command,
                started_at=started_at,
                timeout_sec=params.timeout_sec,
                cancel=invocation.cancel,
            )
        finally:
            directory.mark_available(session_id, invocation_id)
            self._invocations.pop(invocation_id, None)

    async def _invoke_captured(
        self,
        directory: SessionDirectory,
        params: InvokeCommandParams,
    ) -> t.Union[CommandOutput, PSRemotingError]:
        try:
            return await self.invoke(directory, params)
        except PSRemotingError as e:
            log.debug("Fan-out invocation on session %s failed: %s", params.session_id, e)
            return e

    async def invoke_fanout(
        self,
        directory: SessionDirectory,
        session_ids: t.Sequence[str],
        params: InvokeCommandParams,
    ) -> t.List[t.Union[CommandOutput, PSRemotingError]]:
        """Invoke the same command on multiple sessions.

        The sessions are processed in chunks of params.throttle_limit. Each
        chunk runs concurrently and must finish before the next chunk starts.
        A failure on one session does not affect the others, the error is
        returned in place of the output.

        Args:
            directory: The session directory that owns the sessions.
            session_ids: The sessions to run the command on.
            params: The invocation parameters, session_id is ignored.

        Returns:
            List[Union[CommandOutput, PSRemotingError]]: The result for each
            session in the same order as session_ids.
        """
        throttle = max(params.throttle_limit, 1)
        results: t.List[t.Union[CommandOutput, PSRemotingError]] = []

        for idx in range(0, len(session_ids), throttle):
            chunk = session_ids[idx : idx + throttle]
            log.debug("Invoking command on %d sessions (chunk %d)", len(chunk), idx // throttle)
            chunk_results = await asyncio.gather(
                *[self._invoke_captured(directory, params.for_session(sid)) for sid in chunk]
            )
            results.extend(chunk_results)

        return results

    async def collect_output(
        self,
        transport: Transport,
        shell_id: str,
        command_id: str,
        *,
        session_id: str,
        invocation_id: str,
        command: str,
        started_at: datetime.datetime,
        timeout_sec: int = 0,
        cancel: t.Optional[asyncio.Event] = None,
    ) -> CommandOutput:
        """Poll the command output until it is done.

        On a timeout the command is terminated and CommandTimedOut is raised.
        Otherwise a final TERMINATE signal is sent once the loop ends, failures
        to send it are ignored. Setting cancel wakes up the pending poll, the
        output is still collected until the command is done. A cancelled
        command without any stderr is in the Stopped state.

        Args:
            transport: The transport of the session.
            shell_id: The shell the command runs in.
            command_id: The command to collect the output for.
            session_id: The session id for the result.
            invocation_id: The invocation id for the result.
            command: The command text for the result.
            started_at: When the command was started.
            timeout_sec: The timeout in seconds, 0 is no timeout.
            cancel: Event that is set when the command has been stopped.

        Returns:
            CommandOutput: The structured output, Failed if anything was
            written to stderr.
        """
        timer = PollTimer(self.poll_interval, timeout_sec, cancel)
        lock = self._get_lock(transport)
        stdout_parts: t.List[str] = []
        stderr_parts: t.List[str] = []

        terminated = False
        try:
            while True:
                if timer.expired:
                    log.warning("Command %s timed out after %d seconds, terminating", invocation_id, timeout_sec)
                    terminated = True
                    await self._signal_quietly(transport, shell_id, command_id, SignalCode.TERMINATE)
                    raise CommandTimedOut(invocation_id, timeout_sec)

                try:
                    async with lock:
                        stdout, stderr, done = await transport.receive_output(shell_id, command_id)
                except PSRemotingError:
                    raise
                except Exception as e:
                    raise TransportFailure(f"Failed to receive output for command {command_id}: {e}") from e

                stdout_parts.append(stdout)
                stderr_parts.append(stderr)

                if done:
                    break

                await timer.wait()

        finally:
            if not terminated:
                await self._signal_quietly(transport, shell_id, command_id, SignalCode.TERMINATE)

        all_stdout = "".join(stdout_parts)
        all_stderr = "".join(stderr_parts)
        completed_at = _utc_now()
        duration_ms = max(int((completed_at - started_at).total_seconds() * 1000), 0)

        parsed = parse_command_output(
            all_stdout,
            all_stderr,
            output_parser=self.output_parser,
            error_parser=self.error_parser,
        )

        had_errors = bool(all_stderr)
        if had_errors:
            state = InvocationState.FAILED
        elif timer.cancelled:
            state = InvocationState.STOPPED
        else:
            state = InvocationState.COMPLETED

        log.info(
            "Command %s completed in %dms (state: %s, %d output objects, %d errors)",
            invocation_id,
            duration_ms,
            state.name,
            len(parsed.output),
            len(parsed.errors),
        )

        return CommandOutput(
            invocation_id=invocation_id,
            session_id=session_id,
            command=command,
            state=state,
            started_at=started_at,
            streams=parsed.streams,
            output=parsed.output,
            errors=parsed.errors,
            had_errors=had_errors,
            completed_at=completed_at,
            duration_ms=duration_ms,
            raw_clixml=parsed.raw_clixml,
        )

    def _get_invocation(
        self,
        invocation_id: str,
    ) -> _Invocation:
        invocation = self._invocations.get(invocation_id)
        if invocation is None:
            raise InvocationNotFound(invocation_id)

        return invocation

    async def receive_job(
        self,
        directory: SessionDirectory,
        invocation_id: str,
    ) -> CommandOutput:
        """Collect the output of a command started as a job.

        Waits until the job is done, marks the session as available and stops
        tracking the invocation.

        Args:
            directory: The session directory that owns the session.
            invocation_id: The invocation id returned when the job started.

        Returns:
            CommandOutput: The result of the job.
        """
        invocation = self._get_invocation(invocation_id)
        if not invocation.as_job or invocation.state not in [InvocationState.RUNNING, InvocationState.STOPPING]:
            raise InvalidInvocationState(invocation_id, invocation.state, operation="receive")

        session_id = invocation.session_id
        transport = directory.get_transport(session_id)
        shell_id = directory.get_shell_handle(session_id)

        try:
            return await self.collect_output(
                transport,
                shell_id,
                invocation.command_id,
                session_id=session_id,
                invocation_id=invocation_id,
                command=invocation.command,
                started_at=invocation.started_at,
                timeout_sec=invocation.timeout_sec,
                cancel=invocation.cancel,
            )
        finally:
            directory.mark_available(session_id, invocation_id)
            self._invocations.pop(invocation_id, None)

    async def stop(
        self,
        directory: SessionDirectory,
        invocation_id: str,
    ) -> None:
        """Stop a running invocation.

        Sends CTRL_C to the command and marks the invocation as Stopping. The
        output collection of the invocation, if any, is woken up and continues
        until the command is done. Completion of the command is not awaited.

        Args:
            directory: The session directory that owns the session.
            invocation_id: The invocation to stop.
        """
        invocation = self._get_invocation(invocation_id)
        if invocation.state != InvocationState.RUNNING:
            raise InvalidInvocationState(invocation_id, invocation.state)

        transport = directory.get_transport(invocation.session_id)
        shell_id = directory.get_shell_handle(invocation.session_id)

        try:
            async with self._get_lock(transport):
                await transport.signal_command(shell_id, invocation.command_id, SignalCode.CTRL_C)
        except Exception as e:
            raise SignalFailed(f"Failed to send stop signal to invocation '{invocation_id}': {e}") from e

        invocation.state = InvocationState.STOPPING
        invocation.cancel.set()
        log.info("Stop signal sent to invocation %s", invocation_id)

    def get_invocation_state(
        self,
        invocation_id: str,
    ) -> t.Optional[InvocationState]:
        invocation = self._invocations.get(invocation_id)
        return invocation.state if invocation else None

    def list_invocations(self) -> t.List[InvocationSummary]:
        return [InvocationSummary(i.invocation_id, i.session_id, i.state) for i in self._invocations.values()]
