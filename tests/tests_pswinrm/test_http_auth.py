import base64
import logging
import typing as t

import pytest
import pytest_mock
import requests
from requests.structures import CaseInsensitiveDict

import pswinrm
from pswinrm._auth import _ntlm

HTTP_URL = "http://server:5985/wsman"
HTTPS_URL = "https://server:5986/wsman"


def prepare_request(url: str = HTTPS_URL) -> requests.PreparedRequest:
    return requests.Request("POST", url, data=b"data").prepare()


def make_response(
    mocker: pytest_mock.MockerFixture,
    status_code: int,
    www_authenticate: t.Optional[str] = None,
    request: t.Optional[requests.PreparedRequest] = None,
) -> t.Any:
    response = mocker.MagicMock()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict()
    if www_authenticate is not None:
        response.headers["WWW-Authenticate"] = www_authenticate
    response.history = []
    response.request = request or prepare_request()
    return response


def test_http_auth_invalid_max_rounds(credential: pswinrm.Credential) -> None:
    with pytest.raises(ValueError, match="max_rounds must be 1 or greater"):
        pswinrm.HTTPWinRMAuth(pswinrm.BasicAuth(credential), max_rounds=0)


def test_http_auth_sets_initial_header(credential: pswinrm.Credential) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.BasicAuth(credential))

    request = auth(prepare_request())
    assert request.headers["Authorization"] == pswinrm.BasicAuth(credential).initial_auth_header()
    assert request.headers["Connection"] == "Keep-Alive"
    assert auth.response_hook in request.hooks["response"]


def test_http_auth_no_initial_header(credential: pswinrm.Credential) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.DigestAuth(credential))

    request = auth(prepare_request(HTTP_URL))
    assert "Authorization" not in request.headers


def test_http_auth_https_required(credential: pswinrm.Credential) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.BasicAuth(credential))

    with pytest.raises(pswinrm.AuthenticationError, match="Basic authentication requires HTTPS"):
        auth(prepare_request(HTTP_URL))


def test_http_auth_allow_insecure(
    credential: pswinrm.Credential,
    caplog: pytest.LogCaptureFixture,
) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.BasicAuth(credential), allow_insecure=True)

    with caplog.at_level(logging.WARNING, logger="pswinrm"):
        request = auth(prepare_request(HTTP_URL))

    assert request.headers["Authorization"].startswith("Basic ")
    assert "unencrypted HTTP connection" in caplog.text


def test_http_auth_ignores_success(
    mocker: pytest_mock.MockerFixture,
    credential: pswinrm.Credential,
) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.DigestAuth(credential))
    response = make_response(mocker, 200)

    actual = auth.response_hook(response)
    assert actual is response
    response.connection.send.assert_not_called()


def test_http_auth_digest(
    mocker: pytest_mock.MockerFixture,
    credential: pswinrm.Credential,
) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.DigestAuth(credential))
    ok = make_response(mocker, 200)
    challenge = make_response(mocker, 401, 'Digest realm="WinRM", nonce="abc", qop="auth"')
    challenge.connection.send.return_value = ok

    actual = auth.response_hook(challenge, timeout=30)
    assert actual is ok
    assert actual.history == [challenge]

    challenge.raw.release_conn.assert_called_once_with()
    challenge.connection.send.assert_called_once()
    sent_request = challenge.connection.send.call_args[0][0]
    assert sent_request.headers["Authorization"].startswith('Digest username="CORP\\bob", realm="WinRM"')
    assert challenge.connection.send.call_args[1] == {"timeout": 30}
    # The original request is not modified
    assert "Authorization" not in challenge.request.headers


def test_http_auth_ntlm(
    mocker: pytest_mock.MockerFixture,
    credential: pswinrm.Credential,
    challenge_message: t.Callable[..., bytes],
) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.NTLMAuth(credential))
    b64_challenge = base64.b64encode(challenge_message()).decode()

    ok = make_response(mocker, 200)
    second = make_response(mocker, 401, f"Negotiate {b64_challenge}")
    second.connection.send.return_value = ok
    first = make_response(mocker, 401, "Negotiate")
    first.connection.send.return_value = second

    actual = auth.response_hook(first)
    assert actual is ok
    assert auth.provider.state == pswinrm.NTLMState.AUTHENTICATED

    negotiate_header = first.connection.send.call_args[0][0].headers["Authorization"]
    assert base64.b64decode(negotiate_header[10:]) == _ntlm.build_negotiate_message()

    auth_header = second.connection.send.call_args[0][0].headers["Authorization"]
    msg = _ntlm.parse_authenticate_message(base64.b64decode(auth_header[10:]))
    assert msg.username == "bob"
    assert msg.domain == "CORP"


def test_http_auth_stops_when_provider_done(
    mocker: pytest_mock.MockerFixture,
    credential: pswinrm.Credential,
) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.BasicAuth(credential))
    response = make_response(mocker, 401, 'Basic realm="WinRM"')

    actual = auth.response_hook(response)
    assert actual is response
    response.connection.send.assert_not_called()


def test_http_auth_max_rounds(
    mocker: pytest_mock.MockerFixture,
    credential: pswinrm.Credential,
) -> None:
    auth = pswinrm.HTTPWinRMAuth(pswinrm.DigestAuth(credential), max_rounds=3)

    responses = [make_response(mocker, 401, 'Digest realm="WinRM", nonce="abc"') for _ in range(4)]
    for current, following in zip(responses, responses[1:]):
        current.connection.send.return_value = following

    actual = auth.response_hook(responses[0])
    assert actual is responses[3]
    assert actual.status_code == 401
    assert auth.provider.nc == 3
    responses[3].connection.send.assert_not_called()
