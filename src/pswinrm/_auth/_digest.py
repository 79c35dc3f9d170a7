# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

from cryptography.hazmat.primitives import hashes

_ALGORITHMS: dict[str, type[hashes.HashAlgorithm]] = {
    "SHA-256": hashes.SHA256,
    "MD5": hashes.MD5,
}

DEFAULT_ALGORITHM = "SHA-256"


def parse_digest_challenge(
    challenge: str,
) -> dict[str, str]:
    """Parse the parameters of a Digest WWW-Authenticate challenge.

    Args:
        challenge: The header value, optionally prefixed with 'Digest '.

    Returns:
        dict[str, str]: The challenge parameters with lower case keys and
        the surrounding quotes removed from the values.
    """
    if challenge.startswith("Digest "):
        challenge = challenge[7:]

    params: dict[str, str] = {}
    for part in challenge.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue

        params[key.strip().lower()] = value.strip().strip('"')

    return params


def _hex_digest(
    value: str,
    algorithm: str,
) -> str:
    try:
        hash_type = _ALGORITHMS[algorithm.upper()]
    except KeyError:
        raise ValueError(f"Unsupported Digest algorithm '{algorithm}'") from None

    digest = hashes.Hash(hash_type())
    digest.update(value.encode("utf-8"))
    return digest.finalize().hex()


def compute_digest_response(
    username: str,
    password: str,
    realm: str,
    nonce: str,
    nc: int,
    cnonce: str,
    qop: str = "auth",
    method: str = "POST",
    uri: str = "/wsman",
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """Compute the Digest response value.

    Args:
        username: The user, already in the 'domain\\user' form if needed.
        password: The password of the user.
        realm: The realm from the challenge.
        nonce: The server nonce from the challenge.
        nc: The nonce count for this round.
        cnonce: The client nonce for this round.
        qop: The quality of protection.
        method: The HTTP method of the request.
        uri: The request URI.
        algorithm: The hash algorithm, SHA-256 or MD5.

    Returns:
        str: The hex encoded response.
    """
    ha1 = _hex_digest(f"{username}:{realm}:{password}", algorithm)
    ha2 = _hex_digest(f"{method}:{uri}", algorithm)
    return _hex_digest(f"{ha1}:{nonce}:{nc:08x}:{cnonce}:{qop}:{ha2}", algorithm)
