# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

"""NTLM message codec.

Builds and parses the three NTLM handshake messages as documented in
`MS-NLMP`_. Every field is written explicitly with a little endian struct
format so the layout does not depend on any in memory representation.

.. _MS-NLMP:
    https://learn.microsoft.com/en-us/openspecs/windows_protocols/ms-nlmp/
"""

from __future__ import annotations

import enum
import os
import struct
import time
import typing as t

from cryptography.hazmat.primitives import hashes, hmac
from spnego._ntlm_raw.crypto import ntowfv1

from .._exceptions import AuthenticationMessageMalformed

NTLM_SIGNATURE = b"NTLMSSP\x00"

# Seconds between 1601-01-01 and 1970-01-01.
FILETIME_EPOCH_DIFF = 11644473600

NEGOTIATE_MESSAGE_TYPE = 1
CHALLENGE_MESSAGE_TYPE = 2
AUTHENTICATE_MESSAGE_TYPE = 3

NEGOTIATE_MESSAGE_LENGTH = 32
CHALLENGE_MIN_LENGTH = 32
SERVER_CHALLENGE_OFFSET = 24
SERVER_CHALLENGE_LENGTH = 8

AUTHENTICATE_FIELDS_OFFSET = 12
AUTHENTICATE_FLAGS_OFFSET = 60
AUTHENTICATE_PAYLOAD_OFFSET = 88

NTLMV2_BLOB_SIGNATURE = b"\x01\x01\x00\x00"

_FIELD = struct.Struct("<HHI")


class NegotiateFlags(enum.IntFlag):
    """[MS-NLMP] 2.2.2.5 NEGOTIATE flags used by this client."""

    NEGOTIATE_56 = 0x80000000
    NEGOTIATE_KEY_EXCH = 0x40000000
    NEGOTIATE_128 = 0x20000000
    NEGOTIATE_VERSION = 0x02000000
    NEGOTIATE_TARGET_INFO = 0x00800000
    NEGOTIATE_EXTENDED_SESSIONSECURITY = 0x00080000
    NEGOTIATE_ALWAYS_SIGN = 0x00008000
    NEGOTIATE_NTLM = 0x00000200
    NEGOTIATE_SEAL = 0x00000020
    NEGOTIATE_SIGN = 0x00000010
    REQUEST_TARGET = 0x00000004
    NEGOTIATE_OEM = 0x00000002
    NEGOTIATE_UNICODE = 0x00000001


NEGOTIATE_FLAGS = (
    NegotiateFlags.NEGOTIATE_UNICODE
    | NegotiateFlags.NEGOTIATE_OEM
    | NegotiateFlags.REQUEST_TARGET
    | NegotiateFlags.NEGOTIATE_NTLM
    | NegotiateFlags.NEGOTIATE_ALWAYS_SIGN
    | NegotiateFlags.NEGOTIATE_EXTENDED_SESSIONSECURITY
    | NegotiateFlags.NEGOTIATE_128
    | NegotiateFlags.NEGOTIATE_56
)

AUTHENTICATE_FLAGS = (
    NegotiateFlags.NEGOTIATE_UNICODE
    | NegotiateFlags.NEGOTIATE_NTLM
    | NegotiateFlags.NEGOTIATE_ALWAYS_SIGN
    | NegotiateFlags.NEGOTIATE_EXTENDED_SESSIONSECURITY
    | NegotiateFlags.NEGOTIATE_128
)


class AuthenticateMessage(t.NamedTuple):
    """The decoded payload fields of an NTLM Authenticate message."""

    flags: int
    lm_response: bytes
    nt_response: bytes
    domain: str
    username: str
    workstation: str
    session_key: bytes

    @property
    def nt_proof(self) -> bytes:
        return self.nt_response[:16]

    @property
    def blob(self) -> bytes:
        return self.nt_response[16:]


def _pack_field(length: int, offset: int) -> bytes:
    return _FIELD.pack(length, length, offset)


def _hmac_md5(key: bytes, data: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.MD5())
    h.update(data)
    return h.finalize()


def build_negotiate_message() -> bytes:
    """Build the NTLM Negotiate (type 1) message.

    The domain and workstation fields are always empty as this client does
    not advertise them in the first message.
    """
    b_msg = bytearray()
    b_msg += NTLM_SIGNATURE
    b_msg += struct.pack("<I", NEGOTIATE_MESSAGE_TYPE)
    b_msg += struct.pack("<I", NEGOTIATE_FLAGS)
    b_msg += _pack_field(0, 0)  # DomainNameFields
    b_msg += _pack_field(0, 0)  # WorkstationFields

    return bytes(b_msg)


def get_server_challenge(
    data: bytes,
) -> bytes:
    """Get the 8 byte server challenge from an NTLM Challenge (type 2) message.

    Args:
        data: The raw challenge message.

    Returns:
        bytes: The server challenge.
    """
    if len(data) < CHALLENGE_MIN_LENGTH:
        raise AuthenticationMessageMalformed(
            f"Invalid NTLM Type 2 message: too short ({len(data)} < {CHALLENGE_MIN_LENGTH} bytes)"
        )

    if data[:8] != NTLM_SIGNATURE:
        raise AuthenticationMessageMalformed("Invalid NTLM Type 2 message: signature mismatch")

    message_type = struct.unpack_from("<I", data, 8)[0]
    if message_type != CHALLENGE_MESSAGE_TYPE:
        raise AuthenticationMessageMalformed(f"Invalid NTLM Type 2 message: unexpected message type {message_type}")

    return bytes(data[SERVER_CHALLENGE_OFFSET : SERVER_CHALLENGE_OFFSET + SERVER_CHALLENGE_LENGTH])


def nt_hash(password: str) -> bytes:
    """MD4 hash of the UTF-16-LE encoded password."""
    return ntowfv1(password)


def ntlmv2_key(
    nt_hash: bytes,
    username: str,
    domain: str,
) -> bytes:
    b_user_domain = (username.upper() + domain).encode("utf-16-le")
    return _hmac_md5(nt_hash, b_user_domain)


def filetime_now() -> int:
    """The current time as a Windows FILETIME (100ns intervals since 1601)."""
    return time.time_ns() // 100 + FILETIME_EPOCH_DIFF * 10_000_000


def build_ntlmv2_blob(
    timestamp: int,
    client_challenge: bytes,
) -> bytes:
    if len(client_challenge) != 8:
        raise ValueError("The NTLMv2 client challenge must be 8 bytes long")

    return b"".join(
        [
            NTLMV2_BLOB_SIGNATURE,
            b"\x00" * 4,
            struct.pack("<Q", timestamp),
            client_challenge,
            b"\x00" * 4,
        ]
    )


def compute_nt_proof(
    key: bytes,
    server_challenge: bytes,
    blob: bytes,
) -> bytes:
    return _hmac_md5(key, server_challenge + blob)


def build_authenticate_message(
    challenge: bytes,
    username: str,
    password: str,
    domain: str,
    workstation: str,
    *,
    timestamp: int | None = None,
    client_challenge: bytes | None = None,
) -> bytes:
    """Build the NTLM Authenticate (type 3) message.

    Computes the NTLMv2 response for the server challenge in the type 2
    message and packs it with the user details. The LM response and
    encrypted session key are always empty.

    Args:
        challenge: The raw NTLM Challenge message from the server.
        username: The username to authenticate with.
        password: The password of the user.
        domain: The domain of the user.
        workstation: The name of the client workstation.
        timestamp: Override the FILETIME used in the NTLMv2 blob.
        client_challenge: Override the random 8 byte client challenge.

    Returns:
        bytes: The Authenticate message.
    """
    server_challenge = get_server_challenge(challenge)

    key = ntlmv2_key(nt_hash(password), username, domain)
    blob = build_ntlmv2_blob(
        filetime_now() if timestamp is None else timestamp,
        os.urandom(8) if client_challenge is None else client_challenge,
    )
    nt_response = compute_nt_proof(key, server_challenge, blob) + blob

    b_domain = domain.encode("utf-16-le")
    b_user = username.encode("utf-16-le")
    b_workstation = workstation.encode("utf-16-le")

    b_msg = bytearray()
    b_msg += NTLM_SIGNATURE
    b_msg += struct.pack("<I", AUTHENTICATE_MESSAGE_TYPE)

    offset = AUTHENTICATE_PAYLOAD_OFFSET
    for payload in [b"", nt_response, b_domain, b_user, b_workstation, b""]:
        b_msg += _pack_field(len(payload), offset)
        offset += len(payload)

    b_msg += struct.pack("<I", AUTHENTICATE_FLAGS)
    b_msg += b"\x00" * (AUTHENTICATE_PAYLOAD_OFFSET - len(b_msg))

    b_msg += nt_response
    b_msg += b_domain
    b_msg += b_user
    b_msg += b_workstation

    return bytes(b_msg)


def parse_authenticate_message(
    data: bytes,
) -> AuthenticateMessage:
    """Decode the payload fields of an NTLM Authenticate message."""
    if len(data) < AUTHENTICATE_PAYLOAD_OFFSET or data[:8] != NTLM_SIGNATURE:
        raise AuthenticationMessageMalformed("Invalid NTLM Type 3 message")

    message_type = struct.unpack_from("<I", data, 8)[0]
    if message_type != AUTHENTICATE_MESSAGE_TYPE:
        raise AuthenticationMessageMalformed(f"Invalid NTLM Type 3 message: unexpected message type {message_type}")

    fields = []
    for idx in range(6):
        length, _, offset = _FIELD.unpack_from(data, AUTHENTICATE_FIELDS_OFFSET + idx * _FIELD.size)
        if offset + length > len(data):
            raise AuthenticationMessageMalformed("Invalid NTLM Type 3 message: field outside of message bounds")
        fields.append(bytes(data[offset : offset + length]))

    flags = struct.unpack_from("<I", data, AUTHENTICATE_FLAGS_OFFSET)[0]

    return AuthenticateMessage(
        flags=flags,
        lm_response=fields[0],
        nt_response=fields[1],
        domain=fields[2].decode("utf-16-le"),
        username=fields[3].decode("utf-16-le"),
        workstation=fields[4].decode("utf-16-le"),
        session_key=fields[5],
    )
