import logging

import pytest
import pytest_mock

import pswinrm

NS = 'Version="1.1.0.1" xmlns="http://schemas.microsoft.com/powershell/2004/04"'
CLIXML_OUTPUT = f"#< CLIXML\r\n<Objs {NS}><S>a</S><I32>1</I32></Objs>"


def test_parse_plain_output() -> None:
    actual = pswinrm.parse_command_output("line 1\r\nline 2\n\nline 4", "")

    assert actual.output == ["line 1", "line 2", "", "line 4"]
    assert actual.errors == []
    assert actual.raw_clixml is None
    assert [s.stream for s in actual.streams] == [pswinrm.StreamType.OUTPUT] * 4
    assert [s.data for s in actual.streams] == actual.output


def test_parse_empty_output() -> None:
    actual = pswinrm.parse_command_output("", "")
    assert actual == pswinrm.ParsedOutput([], [], [], None)


def test_parse_clixml_output() -> None:
    actual = pswinrm.parse_command_output(CLIXML_OUTPUT, "")

    assert actual.output == ["a", 1]
    assert actual.raw_clixml == CLIXML_OUTPUT
    assert len(actual.streams) == 2


def test_parse_clixml_output_without_header() -> None:
    actual = pswinrm.parse_command_output(f"<Objs {NS}><S>a</S></Objs>", "")

    assert actual.output == ["a"]
    assert actual.raw_clixml is None


def test_parse_invalid_clixml_output(caplog: pytest.LogCaptureFixture) -> None:
    stdout = "#< CLIXML\r\n<Objs><S>broken</Objs>"

    with caplog.at_level(logging.WARNING, logger="pswinrm"):
        actual = pswinrm.parse_command_output(stdout, "")

    assert actual.output == [stdout]
    assert actual.raw_clixml == stdout
    assert "Failed to parse CLIXML output" in caplog.text


def test_parse_plain_errors() -> None:
    actual = pswinrm.parse_command_output("", "error 1\r\n   \r\nerror 2\r\n")

    assert [e.message for e in actual.errors] == ["error 1", "error 2"]
    assert all(e.exception_type == "System.Management.Automation.RemoteException" for e in actual.errors)
    assert [s.stream for s in actual.streams] == [pswinrm.StreamType.ERROR] * 2
    assert actual.streams[0].exception is actual.errors[0]
    assert actual.streams[0].data == actual.errors[0].to_dict()
    assert actual.streams[0].data["message"] == "error 1"


def test_parse_clixml_errors() -> None:
    stderr = f'#< CLIXML\r\n<Objs {NS}><S S="Error">boom_x000D__x000A_</S></Objs>'
    actual = pswinrm.parse_command_output("out", stderr)

    assert actual.output == ["out"]
    assert [e.message for e in actual.errors] == ["boom"]
    assert [s.stream for s in actual.streams] == [pswinrm.StreamType.OUTPUT, pswinrm.StreamType.ERROR]


def test_parse_custom_parsers(mocker: pytest_mock.MockerFixture) -> None:
    error = pswinrm.ErrorRecord(exception_type="Custom", message="custom error")
    output_parser = mocker.MagicMock(return_value=[{"a": 1}])
    error_parser = mocker.MagicMock(return_value=[error])

    actual = pswinrm.parse_command_output(
        CLIXML_OUTPUT,
        "stderr",
        output_parser=output_parser,
        error_parser=error_parser,
    )

    output_parser.assert_called_once_with(CLIXML_OUTPUT)
    error_parser.assert_called_once_with("stderr")
    assert actual.output == [{"a": 1}]
    assert actual.errors == [error]


def test_parse_custom_output_parser_not_called_for_text(mocker: pytest_mock.MockerFixture) -> None:
    output_parser = mocker.MagicMock()

    actual = pswinrm.parse_command_output("plain", "", output_parser=output_parser)

    output_parser.assert_not_called()
    assert actual.output == ["plain"]


def test_parse_plain_output_only_splits_on_newline() -> None:
    actual = pswinrm.parse_command_output("a\x0cb\x0bc\r\nd\u2028e\r\n", "")

    assert actual.output == ["a\x0cb\x0bc", "d\u2028e"]


def test_parse_plain_output_keeps_trailing_blank_line() -> None:
    actual = pswinrm.parse_command_output("a\n\n", "")

    assert actual.output == ["a", ""]


def test_parse_plain_errors_only_split_on_newline() -> None:
    actual = pswinrm.parse_command_output("", "first\x0cstill first\r\nsecond")

    assert [e.message for e in actual.errors] == ["first\x0cstill first", "second"]


def test_parse_clixml_output_non_hex_escape() -> None:
    stdout = f"#< CLIXML\r\n<Objs {NS}><S>my_xtest_file</S><I32>1</I32></Objs>"

    actual = pswinrm.parse_command_output(stdout, "")

    assert actual.output == ["my_xtest_file", 1]


def test_parse_clixml_errors_non_hex_escape() -> None:
    stderr = f'#< CLIXML\r\n<Objs {NS}><S S="Error">Cannot find path C:\\temp\\a_xtest_b.txt_x000D__x000A_</S></Objs>'

    actual = pswinrm.parse_command_output("", stderr)

    assert [e.message for e in actual.errors] == ["Cannot find path C:\\temp\\a_xtest_b.txt"]
