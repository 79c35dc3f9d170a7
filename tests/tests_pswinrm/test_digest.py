import hashlib

import pytest

from pswinrm._auth import _digest


def test_parse_digest_challenge() -> None:
    actual = _digest.parse_digest_challenge('Digest realm="X", nonce="Y", qop=auth')
    assert actual == {"realm": "X", "nonce": "Y", "qop": "auth"}


def test_parse_digest_challenge_without_prefix() -> None:
    actual = _digest.parse_digest_challenge('Realm="WinRM",NONCE="abc==", algorithm=MD5, stale')
    assert actual == {"realm": "WinRM", "nonce": "abc==", "algorithm": "MD5"}


def test_parse_digest_challenge_empty() -> None:
    assert _digest.parse_digest_challenge("Digest ") == {}


def test_compute_digest_response_md5() -> None:
    # RFC 2617 3.5 Example
    actual = _digest.compute_digest_response(
        "Mufasa",
        "Circle Of Life",
        "testrealm@host.com",
        "dcd98b7102dd2f0e8b11d0f600bfb0c093",
        1,
        "0a4f113b",
        qop="auth",
        method="GET",
        uri="/dir/index.html",
        algorithm="MD5",
    )
    assert actual == "6629fae49393a05397450978507c4ef1"


def test_compute_digest_response_sha256() -> None:
    def h(value: str) -> str:
        return hashlib.sha256(value.encode()).hexdigest()

    ha1 = h("CORP\\bob:WinRM:pw")
    ha2 = h("POST:/wsman")
    expected = h(f"{ha1}:nonce:0000000a:cnonce:auth:{ha2}")

    actual = _digest.compute_digest_response("CORP\\bob", "pw", "WinRM", "nonce", 10, "cnonce")
    assert actual == expected


def test_compute_digest_response_counter_changes_response() -> None:
    first = _digest.compute_digest_response("bob", "pw", "WinRM", "nonce", 1, "cnonce")
    second = _digest.compute_digest_response("bob", "pw", "WinRM", "nonce", 2, "cnonce")
    assert first != second


def test_compute_digest_response_invalid_algorithm() -> None:
    with pytest.raises(ValueError, match="Unsupported Digest algorithm 'SHA-512-256'"):
        _digest.compute_digest_response("bob", "pw", "WinRM", "nonce", 1, "cnonce", algorithm="SHA-512-256")
