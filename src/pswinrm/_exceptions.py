# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations


class PSRemotingError(Exception):
    """Base error class for pswinrm operations."""


class SessionError(PSRemotingError):
    """Errors relating to the state of a remoting session."""

    def __init__(
        self,
        message: str,
        session_id: str,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id


class SessionNotFound(SessionError):
    """The session id is not known to the session directory."""

    def __init__(
        self,
        session_id: str,
    ) -> None:
        super().__init__(f"Session '{session_id}' not found", session_id)


class SessionNotOpened(SessionError):
    """The session is not in the Opened state."""

    def __init__(
        self,
        session_id: str,
        state: object,
    ) -> None:
        state_name = getattr(state, "name", state)
        super().__init__(f"Session '{session_id}' is not in Opened state (current: {state_name})", session_id)
        self.state = state


class SessionBusy(SessionError):
    """The session is already running a foreground invocation."""

    def __init__(
        self,
        session_id: str,
    ) -> None:
        super().__init__(f"Session '{session_id}' is busy", session_id)


class AuthenticationError(PSRemotingError):
    """Errors relating to authentication problems."""


class AuthenticationMessageMalformed(AuthenticationError):
    """An authentication token or challenge from the server could not be decoded."""


class AuthenticationMethodUnimplemented(AuthenticationError):
    """The selected authentication method is not available in this library."""

    def __init__(
        self,
        method: str,
        message: str,
    ) -> None:
        super().__init__(message)
        self.method = method


class TransportFailure(PSRemotingError):
    """The WinRM transport failed to complete an operation."""


class CommandTimedOut(PSRemotingError):
    """The command did not complete within the configured timeout."""

    def __init__(
        self,
        invocation_id: str,
        timeout_sec: int,
    ) -> None:
        super().__init__(f"Command timed out after {timeout_sec} seconds")
        self.invocation_id = invocation_id
        self.timeout_sec = timeout_sec


class SignalFailed(PSRemotingError):
    """Failed to send a signal to a running command."""


class InvocationError(PSRemotingError):
    """Errors relating to a tracked command invocation."""

    def __init__(
        self,
        message: str,
        invocation_id: str,
    ) -> None:
        super().__init__(message)
        self.invocation_id = invocation_id


class InvocationNotFound(InvocationError):
    """The invocation id is not tracked by the executor."""

    def __init__(
        self,
        invocation_id: str,
    ) -> None:
        super().__init__(f"Invocation '{invocation_id}' not found", invocation_id)


class InvalidInvocationState(InvocationError):
    """The invocation is not in a state that allows the requested operation."""

    def __init__(
        self,
        invocation_id: str,
        state: object,
        operation: str = "stop",
    ) -> None:
        state_name = getattr(state, "name", state)
        super().__init__(f"Cannot {operation} invocation in state {state_name}", invocation_id)
        self.state = state
