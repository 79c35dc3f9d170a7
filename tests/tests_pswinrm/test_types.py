import datetime

import pytest

import pswinrm


@pytest.mark.parametrize(
    "name, expected",
    [
        ("Basic", pswinrm.AuthMethod.BASIC),
        ("NTLM", pswinrm.AuthMethod.NTLM),
        ("negotiate", pswinrm.AuthMethod.NEGOTIATE),
        ("Default", pswinrm.AuthMethod.DEFAULT),
        ("Kerberos", pswinrm.AuthMethod.KERBEROS),
        ("CredSSP", pswinrm.AuthMethod.CREDSSP),
        ("Certificate", pswinrm.AuthMethod.CERTIFICATE),
        ("Digest", pswinrm.AuthMethod.DIGEST),
        (pswinrm.AuthMethod.NTLM, pswinrm.AuthMethod.NTLM),
    ],
)
def test_auth_method_from_name(name: str, expected: pswinrm.AuthMethod) -> None:
    assert pswinrm.AuthMethod.from_name(name) == expected


def test_auth_method_from_name_invalid() -> None:
    with pytest.raises(ValueError, match="Invalid auth method 'unknown', must be one of basic, ntlm"):
        pswinrm.AuthMethod.from_name("unknown")


def test_credential_repr_hides_password() -> None:
    cred = pswinrm.Credential("user", "SuperSecret1", domain="DOMAIN")

    assert "SuperSecret1" not in repr(cred)
    assert "user" in repr(cred)
    assert cred.password == "SuperSecret1"


def test_invoke_params_defaults() -> None:
    params = pswinrm.InvokeCommandParams()

    assert params.script_block == ""
    assert params.session_id is None
    assert params.argument_list == []
    assert params.parameters == {}
    assert params.throttle_limit == 32
    assert params.timeout_sec == 0
    assert not params.as_job
    assert not params.invoke_and_disconnect


def test_invoke_params_for_session() -> None:
    params = pswinrm.InvokeCommandParams(script_block="1", argument_list=[1], throttle_limit=4)

    actual = params.for_session("s1")
    assert actual.session_id == "s1"
    assert actual.script_block == "1"
    assert actual.argument_list == [1]
    assert actual.throttle_limit == 4
    assert params.session_id is None


def test_command_output_to_dict() -> None:
    started = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
    error = pswinrm.ErrorRecord(exception_type="System.Exception", message="failed")
    timestamp = datetime.datetime(2024, 1, 2, 3, 4, 6, tzinfo=datetime.timezone.utc)
    output = pswinrm.CommandOutput(
        invocation_id="inv",
        session_id="s1",
        command="Get-Date",
        state=pswinrm.InvocationState.FAILED,
        started_at=started,
        streams=[
            pswinrm.StreamRecord(pswinrm.StreamType.ERROR, "failed", timestamp=timestamp, exception=error),
        ],
        errors=[error],
        had_errors=True,
    )

    actual = output.to_dict()
    assert actual == {
        "invocationId": "inv",
        "sessionId": "s1",
        "command": "Get-Date",
        "state": "failed",
        "streams": [
            {
                "stream": "error",
                "data": "failed",
                "timestamp": "2024-01-02T03:04:06+00:00",
                "exception": error.to_dict(),
                "progress": None,
            }
        ],
        "output": [],
        "errors": [error.to_dict()],
        "hadErrors": True,
        "startedAt": "2024-01-02T03:04:05+00:00",
        "completedAt": None,
        "durationMs": 0,
        "rawClixml": None,
    }


def test_progress_record_to_dict() -> None:
    record = pswinrm.ProgressRecord("Copying", "Working", percent_complete=10)

    assert record.to_dict() == {
        "activity": "Copying",
        "statusDescription": "Working",
        "percentComplete": 10,
        "secondsRemaining": -1,
        "currentOperation": None,
        "parentActivityId": -1,
        "activityId": 0,
    }


def test_stream_record_timestamp() -> None:
    record = pswinrm.StreamRecord(pswinrm.StreamType.OUTPUT, "data")

    assert record.timestamp.tzinfo is not None
    assert record.exception is None
    assert record.progress is None
