# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

import dataclasses
import datetime
import enum
import typing as t


class AuthMethod(enum.Enum):
    """Authentication method for WinRM connections."""

    BASIC = "basic"
    NTLM = "ntlm"
    NEGOTIATE = "negotiate"
    DEFAULT = "default"
    KERBEROS = "kerberos"
    CREDSSP = "credssp"
    CERTIFICATE = "certificate"
    DIGEST = "digest"

    @classmethod
    def from_name(
        cls,
        name: str | AuthMethod,
    ) -> AuthMethod:
        """Get the AuthMethod from a case insensitive name like 'CredSSP'."""
        if isinstance(name, AuthMethod):
            return name

        try:
            return cls(name.lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Invalid auth method '{name}', must be one of {valid}") from None


class SessionState(enum.Enum):
    OPENING = "opening"
    OPENED = "opened"
    DISCONNECTED = "disconnected"
    CLOSING = "closing"
    CLOSED = "closed"
    BROKEN = "broken"


class SessionAvailability(enum.Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    NONE = "none"


class SessionInfo(t.NamedTuple):
    """The session details the executor needs from the session directory.

    Attributes:
        state: The state of the session.
        availability: Whether the session is running a foreground command.
    """

    state: SessionState
    availability: SessionAvailability


class InvocationState(enum.Enum):
    """State of a command invocation (pipeline)."""

    NOT_STARTED = "notStarted"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    COMPLETED = "completed"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


class StreamType(enum.Enum):
    OUTPUT = "output"
    ERROR = "error"
    WARNING = "warning"
    VERBOSE = "verbose"
    DEBUG = "debug"
    INFORMATION = "information"
    PROGRESS = "progress"


class SignalCode(enum.Enum):
    """
    [MS-WSMV] 2.2.4.38 Signal - Code
    https://msdn.microsoft.com/en-us/library/cc251558.aspx

    The control code to send in a Signal message to the server
    """

    CTRL_C = "http://schemas.microsoft.com/wbem/wsman/1/windows/shell/signal/ctrl_c"
    CTRL_BREAK = "http://schemas.microsoft.com/wbem/wsman/1/windows/shell/signal/ctrl_break"
    TERMINATE = "http://schemas.microsoft.com/wbem/wsman/1/windows/shell/signal/terminate"


@dataclasses.dataclass(frozen=True)
class Credential:
    """Credentials for a remoting session.

    Attributes:
        username: The username to authenticate with.
        password: The password for username.
        domain: The domain of the user for domain joined authentication.
        certificate_path: Path to a PEM/DER client certificate for
            certificate auth.
        certificate_thumbprint: The SHA1 thumbprint of the client
            certificate for certificate auth.
        private_key_path: Path to the private key of the client
            certificate.
    """

    username: str
    password: t.Optional[str] = dataclasses.field(repr=False, default=None)
    domain: t.Optional[str] = None
    certificate_path: t.Optional[str] = None
    certificate_thumbprint: t.Optional[str] = None
    private_key_path: t.Optional[str] = None


@dataclasses.dataclass
class ErrorRecord:
    """A PowerShell ErrorRecord in a simplified form."""

    exception_type: str
    message: str
    fully_qualified_error_id: t.Optional[str] = None
    category: t.Optional[str] = None
    target_object: t.Optional[str] = None
    script_stack_trace: t.Optional[str] = None
    invocation_info: t.Optional[str] = None

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "exceptionType": self.exception_type,
            "message": self.message,
            "fullyQualifiedErrorId": self.fully_qualified_error_id,
            "category": self.category,
            "targetObject": self.target_object,
            "scriptStackTrace": self.script_stack_trace,
            "invocationInfo": self.invocation_info,
        }


@dataclasses.dataclass
class ProgressRecord:
    activity: str
    status_description: str
    percent_complete: int = -1
    seconds_remaining: int = -1
    current_operation: t.Optional[str] = None
    parent_activity_id: int = -1
    activity_id: int = 0

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "activity": self.activity,
            "statusDescription": self.status_description,
            "percentComplete": self.percent_complete,
            "secondsRemaining": self.seconds_remaining,
            "currentOperation": self.current_operation,
            "parentActivityId": self.parent_activity_id,
            "activityId": self.activity_id,
        }


@dataclasses.dataclass
class StreamRecord:
    """A single record from one of the output streams.

    Attributes:
        stream: The stream the record was written to.
        data: The payload of the record.
        timestamp: When the record was processed.
        exception: The error details for ERROR records.
        progress: The progress details for PROGRESS records.
    """

    stream: StreamType
    data: t.Any
    timestamp: datetime.datetime = dataclasses.field(default_factory=lambda: _utc_now())
    exception: t.Optional[ErrorRecord] = None
    progress: t.Optional[ProgressRecord] = None

    def to_dict(self) -> dict[str, t.Any]:
        return {
            "stream": self.stream.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "exception": self.exception.to_dict() if self.exception else None,
            "progress": self.progress.to_dict() if self.progress else None,
        }


@dataclasses.dataclass
class CommandOutput:
    """The result of a command invocation.

    Attributes:
        invocation_id: The unique id of the invocation.
        session_id: The session the command ran on.
        command: The original command text.
        state: The final (or current for jobs) invocation state.
        streams: All records across all streams in the order processed.
        output: The output stream objects.
        errors: The error stream records.
        had_errors: Whether anything was written to the error stream.
        started_at: When the command was dispatched.
        completed_at: When the output collection completed.
        duration_ms: Duration between start and completion in milliseconds.
        raw_clixml: The raw CLIXML output when the output was CLIXML.
    """

    invocation_id: str
    session_id: str
    command: str
    state: InvocationState
    started_at: datetime.datetime
    streams: list[StreamRecord] = dataclasses.field(default_factory=list)
    output: list[t.Any] = dataclasses.field(default_factory=list)
    errors: list[ErrorRecord] = dataclasses.field(default_factory=list)
    had_errors: bool = False
    completed_at: t.Optional[datetime.datetime] = None
    duration_ms: int = 0
    raw_clixml: t.Optional[str] = None

    def to_dict(self) -> dict[str, t.Any]:
        """JSON friendly representation of the output."""
        return {
            "invocationId": self.invocation_id,
            "sessionId": self.session_id,
            "command": self.command,
            "state": self.state.value,
            "streams": [s.to_dict() for s in self.streams],
            "output": self.output,
            "errors": [e.to_dict() for e in self.errors],
            "hadErrors": self.had_errors,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationMs": self.duration_ms,
            "rawClixml": self.raw_clixml,
        }


@dataclasses.dataclass
class InvokeCommandParams:
    """Parameters of an Invoke-Command style invocation.

    Attributes:
        session_id: The session to run the command on, set per session for
            fan-out invocations.
        script_block: The script text to run when no file_path or
            command_name is set. It is also the command text reported in the
            output.
        argument_list: Positional arguments for the command.
        parameters: Named parameters for the command.
        as_job: Run as a background job and return straight away.
        throttle_limit: The fan-out chunk size.
        input_object: Objects piped into the command.
        invoke_and_disconnect: Disconnect the session after dispatching the
            command, no output is collected.
        hide_computer_name: Kept for parity with Invoke-Command, the
            computer name is added by the remote side.
        file_path: A script path to dot source on the remote host.
        command_name: A command to run directly.
        timeout_sec: The timeout for the output collection, 0 is no timeout.
    """

    script_block: str = ""
    session_id: t.Optional[str] = None
    argument_list: list[t.Any] = dataclasses.field(default_factory=list)
    parameters: dict[str, t.Any] = dataclasses.field(default_factory=dict)
    as_job: bool = False
    throttle_limit: int = 32
    input_object: list[t.Any] = dataclasses.field(default_factory=list)
    invoke_and_disconnect: bool = False
    hide_computer_name: bool = False
    file_path: t.Optional[str] = None
    command_name: t.Optional[str] = None
    timeout_sec: int = 0

    def __post_init__(self) -> None:
        if self.throttle_limit < 1:
            raise ValueError(f"throttle_limit must be 1 or greater, got {self.throttle_limit}")

        if self.timeout_sec < 0:
            raise ValueError(f"timeout_sec must be 0 or greater, got {self.timeout_sec}")

    def for_session(
        self,
        session_id: str,
    ) -> InvokeCommandParams:
        """Copy of the params targeting the session specified."""
        return dataclasses.replace(self, session_id=session_id)


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)
