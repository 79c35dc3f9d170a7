# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from ._digest import compute_digest_response, parse_digest_challenge
from ._http import HTTPWinRMAuth
from ._ntlm import (
    build_authenticate_message,
    build_negotiate_message,
    get_server_challenge,
)
from ._providers import (
    AuthProvider,
    BasicAuth,
    CertificateAuth,
    CredSSPAuth,
    DigestAuth,
    KerberosAuth,
    NegotiateAuth,
    NTLMAuth,
    NTLMState,
    create_auth_provider,
)

__all__ = [
    "AuthProvider",
    "BasicAuth",
    "CertificateAuth",
    "CredSSPAuth",
    "DigestAuth",
    "HTTPWinRMAuth",
    "KerberosAuth",
    "NegotiateAuth",
    "NTLMAuth",
    "NTLMState",
    "build_authenticate_message",
    "build_negotiate_message",
    "compute_digest_response",
    "create_auth_provider",
    "get_server_challenge",
    "parse_digest_challenge",
]
