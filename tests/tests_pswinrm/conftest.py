import struct
import typing as t

import pytest

import pswinrm

SERVER_CHALLENGE = b"\x01\x23\x45\x67\x89\xab\xcd\xef"


def make_challenge_message(
    server_challenge: bytes = SERVER_CHALLENGE,
) -> bytes:
    """Builds a minimal NTLM Challenge message as returned by a server."""
    return (
        b"NTLMSSP\x00"
        + struct.pack("<I", 2)
        + struct.pack("<HHI", 0, 0, 40)  # TargetNameFields
        + struct.pack("<I", 0xA2898205)
        + server_challenge
        + b"\x00" * 8
    )


class FakeTransport:
    def __init__(
        self,
        outputs: t.Optional[t.List[t.Tuple[str, str, bool]]] = None,
        *,
        never_done: bool = False,
        name: str = "transport",
        events: t.Optional[t.List[str]] = None,
        execute_error: t.Optional[Exception] = None,
        receive_error: t.Optional[Exception] = None,
        signal_error: t.Optional[Exception] = None,
    ) -> None:
        self.outputs = list(outputs or [])
        self.never_done = never_done
        self.name = name
        self.events = events if events is not None else []
        self.execute_error = execute_error
        self.receive_error = receive_error
        self.signal_error = signal_error
        self.scripts: t.List[str] = []
        self.signals: t.List[pswinrm.SignalCode] = []
        self.receive_calls = 0

    async def execute_command(
        self,
        shell_id: str,
        script: str,
    ) -> str:
        self.events.append(f"{self.name}:execute")
        if self.execute_error:
            raise self.execute_error

        self.scripts.append(script)
        return f"{shell_id}-command-{len(self.scripts)}"

    async def receive_output(
        self,
        shell_id: str,
        command_id: str,
    ) -> t.Tuple[str, str, bool]:
        self.events.append(f"{self.name}:receive")
        self.receive_calls += 1
        if self.receive_error:
            raise self.receive_error

        if self.outputs:
            return self.outputs.pop(0)

        return "", "", not self.never_done

    async def signal_command(
        self,
        shell_id: str,
        command_id: str,
        signal: pswinrm.SignalCode,
    ) -> None:
        self.events.append(f"{self.name}:signal:{signal.name}")
        self.signals.append(signal)
        if self.signal_error:
            raise self.signal_error


class FakeSessionDirectory:
    def __init__(self) -> None:
        self.sessions: t.Dict[str, t.Dict[str, t.Any]] = {}
        self.busy_calls: t.List[t.Tuple[str, str]] = []
        self.available_calls: t.List[t.Tuple[str, str]] = []
        self.disconnected: t.List[str] = []
        self.disconnect_errors: t.Dict[str, Exception] = {}

    def add_session(
        self,
        session_id: str,
        transport: t.Optional[FakeTransport] = None,
        state: pswinrm.SessionState = pswinrm.SessionState.OPENED,
        availability: pswinrm.SessionAvailability = pswinrm.SessionAvailability.AVAILABLE,
    ) -> FakeTransport:
        transport = transport or FakeTransport(name=session_id)
        self.sessions[session_id] = {
            "state": state,
            "availability": availability,
            "transport": transport,
            "shell_id": f"shell-{session_id}",
        }
        return transport

    def _get(self, session_id: str) -> t.Dict[str, t.Any]:
        try:
            return self.sessions[session_id]
        except KeyError:
            raise pswinrm.SessionNotFound(session_id) from None

    def get_session(self, session_id: str) -> pswinrm.SessionInfo:
        session = self._get(session_id)
        return pswinrm.SessionInfo(session["state"], session["availability"])

    def get_transport(self, session_id: str) -> FakeTransport:
        return self._get(session_id)["transport"]

    def get_shell_handle(self, session_id: str) -> str:
        return self._get(session_id)["shell_id"]

    def mark_busy(self, session_id: str, invocation_id: str) -> None:
        self._get(session_id)["availability"] = pswinrm.SessionAvailability.BUSY
        self.busy_calls.append((session_id, invocation_id))

    def mark_available(self, session_id: str, invocation_id: str) -> None:
        self._get(session_id)["availability"] = pswinrm.SessionAvailability.AVAILABLE
        self.available_calls.append((session_id, invocation_id))

    async def disconnect_session(self, session_id: str) -> None:
        if session_id in self.disconnect_errors:
            raise self.disconnect_errors[session_id]

        self._get(session_id)["state"] = pswinrm.SessionState.DISCONNECTED
        self.disconnected.append(session_id)


@pytest.fixture(scope="function")
def challenge_message() -> t.Callable[..., bytes]:
    return make_challenge_message


@pytest.fixture(scope="function")
def transport_factory() -> t.Type[FakeTransport]:
    return FakeTransport


@pytest.fixture(scope="function")
def directory() -> FakeSessionDirectory:
    return FakeSessionDirectory()


@pytest.fixture(scope="function")
def executor() -> pswinrm.PSCommandExecutor:
    return pswinrm.PSCommandExecutor(poll_interval=0.01)


@pytest.fixture(scope="function")
def credential() -> pswinrm.Credential:
    return pswinrm.Credential(username="bob", password="pw", domain="CORP")
