# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from ._auth import (
    AuthProvider,
    BasicAuth,
    CertificateAuth,
    CredSSPAuth,
    DigestAuth,
    HTTPWinRMAuth,
    KerberosAuth,
    NegotiateAuth,
    NTLMAuth,
    NTLMState,
    create_auth_provider,
)
from ._clixml import (
    CLIXML_HEADER,
    has_clixml,
    parse_clixml,
    parse_error_stream,
    parse_progress_stream,
)
from ._exceptions import (
    AuthenticationError,
    AuthenticationMessageMalformed,
    AuthenticationMethodUnimplemented,
    CommandTimedOut,
    InvalidInvocationState,
    InvocationError,
    InvocationNotFound,
    PSRemotingError,
    SessionBusy,
    SessionError,
    SessionNotFound,
    SessionNotOpened,
    SignalFailed,
    TransportFailure,
)
from ._executor import (
    InvocationSummary,
    PollTimer,
    PSCommandExecutor,
    SessionDirectory,
    Transport,
)
from ._output import ParsedOutput, parse_command_output
from ._script import ScriptTemplates, build_script, ps_value_to_arg
from ._types import (
    AuthMethod,
    CommandOutput,
    Credential,
    ErrorRecord,
    InvocationState,
    InvokeCommandParams,
    ProgressRecord,
    SessionAvailability,
    SessionInfo,
    SessionState,
    SignalCode,
    StreamRecord,
    StreamType,
)

__all__ = [
    "AuthenticationError",
    "AuthenticationMessageMalformed",
    "AuthenticationMethodUnimplemented",
    "AuthMethod",
    "AuthProvider",
    "BasicAuth",
    "CertificateAuth",
    "CLIXML_HEADER",
    "CommandOutput",
    "CommandTimedOut",
    "Credential",
    "CredSSPAuth",
    "DigestAuth",
    "ErrorRecord",
    "HTTPWinRMAuth",
    "InvalidInvocationState",
    "InvocationError",
    "InvocationNotFound",
    "InvocationState",
    "InvocationSummary",
    "InvokeCommandParams",
    "KerberosAuth",
    "NegotiateAuth",
    "NTLMAuth",
    "NTLMState",
    "ParsedOutput",
    "PollTimer",
    "ProgressRecord",
    "PSCommandExecutor",
    "PSRemotingError",
    "ScriptTemplates",
    "SessionAvailability",
    "SessionBusy",
    "SessionDirectory",
    "SessionError",
    "SessionInfo",
    "SessionNotFound",
    "SessionNotOpened",
    "SessionState",
    "SignalCode",
    "SignalFailed",
    "StreamRecord",
    "StreamType",
    "Transport",
    "TransportFailure",
    "build_script",
    "create_auth_provider",
    "has_clixml",
    "parse_clixml",
    "parse_command_output",
    "parse_error_stream",
    "parse_progress_stream",
    "ps_value_to_arg",
]
