# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

import logging
import typing as t

from ._clixml import (
    CLIXML_HEADER,
    REMOTE_EXCEPTION_TYPE,
    has_clixml,
    parse_clixml,
    parse_error_stream,
)
from ._types import ErrorRecord, StreamRecord, StreamType

log = logging.getLogger(__name__)

OutputParser = t.Callable[[str], t.List[t.Any]]
ErrorParser = t.Callable[[str], t.List[ErrorRecord]]


def _split_lines(
    text: str,
) -> list[str]:
    lines = [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]
    if text.endswith("\n"):
        lines.pop()

    return lines


class ParsedOutput(t.NamedTuple):
    """The structured form of the collected stdout and stderr.

    Attributes:
        streams: The output records followed by the error records.
        output: The output objects.
        errors: The error records.
        raw_clixml: The stdout text if it was CLIXML.
    """

    streams: list[StreamRecord]
    output: list[t.Any]
    errors: list[ErrorRecord]
    raw_clixml: t.Optional[str]


def parse_command_output(
    stdout: str,
    stderr: str,
    *,
    output_parser: OutputParser = parse_clixml,
    error_parser: ErrorParser = parse_error_stream,
) -> ParsedOutput:
    """Parse the collected stdout and stderr of a command.

    Stdout containing CLIXML is passed to the output parser, falling back to a
    single text value if the parser fails. Plain stdout is one text value per
    line. Stderr is passed to the error parser, if that does not produce any
    records each non blank line becomes a RemoteException error record.

    Args:
        stdout: All the stdout text of the command.
        stderr: All the stderr text of the command.
        output_parser: Parses CLIXML into output objects.
        error_parser: Parses stderr into error records.

    Returns:
        ParsedOutput: The structured output.
    """
    streams: list[StreamRecord] = []
    output: list[t.Any] = []
    errors: list[ErrorRecord] = []

    if stdout:
        if has_clixml(stdout):
            try:
                output = list(output_parser(stdout))
            except ValueError as e:
                log.warning("Failed to parse CLIXML output: %s", e)
                output = [stdout]
        else:
            output = _split_lines(stdout)

    for obj in output:
        streams.append(StreamRecord(stream=StreamType.OUTPUT, data=obj))

    if stderr:
        errors = list(error_parser(stderr))
        if not errors:
            errors = [
                ErrorRecord(exception_type=REMOTE_EXCEPTION_TYPE, message=line)
                for line in _split_lines(stderr)
                if line.strip()
            ]

    for err in errors:
        streams.append(StreamRecord(stream=StreamType.ERROR, data=err.to_dict(), exception=err))

    raw_clixml = stdout if CLIXML_HEADER in stdout else None

    return ParsedOutput(streams, output, errors, raw_clixml)
