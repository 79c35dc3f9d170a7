# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

import base64
import binascii
import enum
import logging
import os
import typing as t
import uuid

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from .._exceptions import (
    AuthenticationError,
    AuthenticationMessageMalformed,
    AuthenticationMethodUnimplemented,
)
from .._types import AuthMethod, Credential
from ._digest import DEFAULT_ALGORITHM, compute_digest_response, parse_digest_challenge
from ._ntlm import build_authenticate_message, build_negotiate_message

log = logging.getLogger(__name__)


class AuthProvider:
    """WinRM Authentication Provider stub.

    An auth provider produces the values for the HTTP Authorization header.
    A new provider is created for every authentication attempt as the
    providers keep per connection negotiation state.
    """

    @property
    def name(self) -> str:
        """The name of the authentication mechanism."""
        raise NotImplementedError()  # pragma: nocover

    @property
    def requires_https(self) -> bool:
        """Whether the mechanism should only be used over HTTPS."""
        return False

    @property
    def supports_channel_binding(self) -> bool:
        """Whether the mechanism can bind the auth to the TLS channel."""
        return False

    def initial_auth_header(self) -> str:
        """The Authorization header value for the first request.

        Returns:
            str: The header value, an empty string means no Authorization
            header should be sent.
        """
        raise NotImplementedError()  # pragma: nocover

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        """Process a 401 challenge from the server.

        Args:
            challenge: The WWW-Authenticate header value from the server.

        Returns:
            Optional[str]: The next Authorization header value to send. None
            means authentication is complete and no further header is sent.
        """
        raise NotImplementedError()  # pragma: nocover

    async def process_challenge_async(
        self,
        challenge: str,
    ) -> str | None:
        """Async version of process_challenge."""
        return self.process_challenge(challenge)


def _qualified_username(
    username: str,
    domain: str | None,
) -> str:
    return f"{domain}\\{username}" if domain else username


class BasicAuth(AuthProvider):
    """WinRM Basic Auth.

    Sends the base64 encoded credentials in a single round. The credentials
    are effectively plaintext so this should only be used over HTTPS.

    Args:
        credential: The credential to authenticate with.
    """

    def __init__(
        self,
        credential: Credential,
    ) -> None:
        self.username = credential.username
        self.domain = credential.domain
        self._password = credential.password or ""

    @property
    def name(self) -> str:
        return "Basic"

    @property
    def requires_https(self) -> bool:
        return True

    def initial_auth_header(self) -> str:
        b_token = f"{_qualified_username(self.username, self.domain)}:{self._password}".encode("utf-8")
        return f"Basic {base64.b64encode(b_token).decode()}"

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        return None


class NTLMState(enum.Enum):
    INITIAL = enum.auto()
    NEGOTIATE_SENT = enum.auto()
    AUTHENTICATED = enum.auto()


def _default_workstation() -> str:
    return (os.environ.get("COMPUTERNAME") or os.environ.get("HOSTNAME") or "WORKSTATION").upper()


class NTLMAuth(AuthProvider):
    """WinRM NTLM Auth.

    Implements the three message NTLM handshake. The Negotiate message is
    sent as the initial header, the first challenge resends it and the
    second challenge is answered with the NTLMv2 Authenticate message.

    Args:
        credential: The credential to authenticate with.
        workstation: Override the workstation name sent to the server.
    """

    def __init__(
        self,
        credential: Credential,
        workstation: str | None = None,
    ) -> None:
        self.username = credential.username
        self.domain = credential.domain or "."
        self.workstation = workstation or _default_workstation()
        self.state = NTLMState.INITIAL
        self._password = credential.password or ""

    @property
    def name(self) -> str:
        return "NTLM"

    def initial_auth_header(self) -> str:
        return f"Negotiate {base64.b64encode(build_negotiate_message()).decode()}"

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        if self.state == NTLMState.INITIAL:
            self.state = NTLMState.NEGOTIATE_SENT
            return self.initial_auth_header()

        elif self.state == NTLMState.NEGOTIATE_SENT:
            for prefix in ["Negotiate ", "NTLM "]:
                if challenge.startswith(prefix):
                    token = challenge[len(prefix) :].strip()
                    break
            else:
                raise AuthenticationMessageMalformed("Invalid NTLM challenge header")

            try:
                b_challenge = base64.b64decode(token, validate=True)
            except binascii.Error as e:
                raise AuthenticationMessageMalformed(f"Failed to decode NTLM challenge: {e}") from e

            log.debug("Building NTLM Authenticate message for %s\\%s", self.domain, self.username)
            auth_msg = build_authenticate_message(
                b_challenge,
                self.username,
                self._password,
                self.domain,
                self.workstation,
            )
            self.state = NTLMState.AUTHENTICATED
            return f"Negotiate {base64.b64encode(auth_msg).decode()}"

        return None


class NegotiateAuth(AuthProvider):
    """WinRM Negotiate Auth.

    Negotiate is expected to try Kerberos and fall back to NTLM. There is no
    Kerberos support in this library so this always uses NTLM.

    Args:
        credential: The credential to authenticate with.
    """

    def __init__(
        self,
        credential: Credential,
    ) -> None:
        self._inner = NTLMAuth(credential)

    @property
    def name(self) -> str:
        return "Negotiate"

    @property
    def state(self) -> NTLMState:
        return self._inner.state

    def initial_auth_header(self) -> str:
        return self._inner.initial_auth_header()

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        return self._inner.process_challenge(challenge)


class KerberosAuth(AuthProvider):
    """WinRM Kerberos Auth.

    Placeholder for Kerberos auth, this requires OS level SSPI/GSSAPI
    integration which is not available. Use Negotiate instead.

    Args:
        credential: The credential to authenticate with.
        target_host: The target host used to build the SPN.
    """

    def __init__(
        self,
        credential: Credential,
        target_host: str,
    ) -> None:
        self.credential = credential
        self.spn = f"HTTP/{target_host}"

    @property
    def name(self) -> str:
        return "Kerberos"

    @property
    def supports_channel_binding(self) -> bool:
        return True

    def initial_auth_header(self) -> str:
        log.warning("Kerberos auth requested for SPN %s - Kerberos is not implemented", self.spn)
        raise AuthenticationMethodUnimplemented(
            "Kerberos",
            "Kerberos authentication requires OS-level SSPI/GSSAPI integration. "
            "Use Negotiate for automatic Kerberos with NTLM fallback.",
        )

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        return None


class CredSSPAuth(AuthProvider):
    """WinRM CredSSP Auth.

    Placeholder for CredSSP auth which delegates the credentials to the
    remote host through a TLS wrapped exchange. Not implemented.

    Args:
        credential: The credential to authenticate with.
    """

    def __init__(
        self,
        credential: Credential,
    ) -> None:
        self.credential = credential

    @property
    def name(self) -> str:
        return "CredSSP"

    @property
    def requires_https(self) -> bool:
        return True

    @property
    def supports_channel_binding(self) -> bool:
        return True

    def initial_auth_header(self) -> str:
        log.warning("CredSSP auth requested - CredSSP is not implemented")
        raise AuthenticationMethodUnimplemented(
            "CredSSP",
            "CredSSP authentication requires TLS channel binding and is not yet fully implemented. "
            "Consider using Negotiate or NTLM authentication.",
        )

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        return None


class CertificateAuth(AuthProvider):
    """WinRM Certificate Auth.

    Certificate auth is special where no Authorization header is produced.
    The certificate is provided to the TLS layer by the transport, this
    provider only validates the certificate configuration.

    Args:
        credential: The credential with the certificate details.
    """

    def __init__(
        self,
        credential: Credential,
    ) -> None:
        self.certificate_path = credential.certificate_path
        self.thumbprint = credential.certificate_thumbprint
        self.private_key_path = credential.private_key_path

    @property
    def name(self) -> str:
        return "Certificate"

    @property
    def requires_https(self) -> bool:
        return True

    def load_thumbprint(self) -> str | None:
        """Get the SHA1 thumbprint of the certificate at certificate_path.

        Returns:
            Optional[str]: The upper case hex thumbprint or None if no
            certificate path is configured.
        """
        if not self.certificate_path:
            return None

        with open(self.certificate_path, mode="rb") as fd:
            b_cert = fd.read()

        try:
            if b"-----BEGIN CERTIFICATE-----" in b_cert:
                cert = x509.load_pem_x509_certificate(b_cert)
            else:
                cert = x509.load_der_x509_certificate(b_cert)
        except ValueError as e:
            raise AuthenticationError(f"Failed to load certificate '{self.certificate_path}': {e}") from e

        return cert.fingerprint(hashes.SHA1()).hex().upper()

    def initial_auth_header(self) -> str:
        if not self.certificate_path and not self.thumbprint:
            raise AuthenticationError("Certificate authentication requires a certificate path or thumbprint")

        if self.certificate_path and self.thumbprint:
            actual = self.load_thumbprint()
            expected = self.thumbprint.replace(" ", "").replace(":", "").upper()
            if actual != expected:
                raise AuthenticationError(
                    f"Certificate '{self.certificate_path}' thumbprint {actual} does not match the configured "
                    f"thumbprint {expected}"
                )

        log.debug("Certificate auth: cert=%s, thumbprint=%s", self.certificate_path, self.thumbprint)
        return ""

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        return None


class DigestAuth(AuthProvider):
    """WinRM Digest Auth.

    Digest auth requires a server challenge before a header can be produced.
    Every challenge round increments the nonce count and uses a new client
    nonce.

    Args:
        credential: The credential to authenticate with.
    """

    def __init__(
        self,
        credential: Credential,
    ) -> None:
        self.username = credential.username
        self.domain = credential.domain
        self.realm: str | None = None
        self.nonce: str | None = None
        self.nc = 0
        self._password = credential.password or ""

    @property
    def name(self) -> str:
        return "Digest"

    def initial_auth_header(self) -> str:
        return ""

    def process_challenge(
        self,
        challenge: str,
    ) -> str | None:
        params = parse_digest_challenge(challenge)

        realm = params.get("realm", "WinRM")
        nonce = params.get("nonce")
        if not nonce:
            raise AuthenticationMessageMalformed("Missing nonce in Digest challenge")
        algorithm = params.get("algorithm", DEFAULT_ALGORITHM)

        self.realm = realm
        self.nonce = nonce
        self.nc += 1

        cnonce = str(uuid.uuid4())
        user = _qualified_username(self.username, self.domain)
        uri = "/wsman"

        try:
            response = compute_digest_response(
                user,
                self._password,
                realm,
                nonce,
                self.nc,
                cnonce,
                qop="auth",
                method="POST",
                uri=uri,
                algorithm=algorithm,
            )
        except ValueError as e:
            raise AuthenticationMessageMalformed(str(e)) from e

        header = (
            f'Digest username="{user}", realm="{realm}", nonce="{nonce}", uri="{uri}", '
            f'nc={self.nc:08x}, cnonce="{cnonce}", qop=auth, response="{response}"'
        )
        if "algorithm" in params:
            header += f", algorithm={algorithm}"

        return header


def create_auth_provider(
    method: AuthMethod | str,
    credential: Credential,
    target_host: str = "unspecified",
) -> AuthProvider:
    """Create Auth Provider.

    Creates the authentication provider for the configured method.

    Args:
        method: The authentication method or its name.
        credential: The credential to authenticate with.
        target_host: The target host, used for the Kerberos SPN.

    Returns:
        AuthProvider: A new auth provider for a single connection attempt.
    """
    method = AuthMethod.from_name(method)

    provider_map: dict[AuthMethod, t.Callable[[], AuthProvider]] = {
        AuthMethod.BASIC: lambda: BasicAuth(credential),
        AuthMethod.NTLM: lambda: NTLMAuth(credential),
        AuthMethod.NEGOTIATE: lambda: NegotiateAuth(credential),
        AuthMethod.DEFAULT: lambda: NegotiateAuth(credential),
        AuthMethod.KERBEROS: lambda: KerberosAuth(credential, target_host),
        AuthMethod.CREDSSP: lambda: CredSSPAuth(credential),
        AuthMethod.CERTIFICATE: lambda: CertificateAuth(credential),
        AuthMethod.DIGEST: lambda: DigestAuth(credential),
    }
    provider = provider_map[method]()
    log.debug("Created %s auth provider for method %s", provider.name, method.value)

    return provider
