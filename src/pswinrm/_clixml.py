# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

"""CLIXML parsing.

Converts the CLIXML documents written by PowerShell to stdout/stderr into
plain Python values. Complex objects become dicts with the adapted and
extended properties merged together and the type names stored under
``__typenames``, the ToString value under ``__toString``.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import typing as t
import xml.etree.ElementTree as ET
from xml.sax.saxutils import unescape

from ._types import ErrorRecord, ProgressRecord

log = logging.getLogger(__name__)

CLIXML_HEADER = "#< CLIXML"
REMOTE_EXCEPTION_TYPE = "System.Management.Automation.RemoteException"
SECURE_STRING_MASK = "***SECURE***"

_OBJS_PATTERN = re.compile(r"<Objs\b(?:[^>]*/>|.*?</Objs>)", re.DOTALL)
_ERROR_STRING_PATTERN = re.compile(r'<S S="Error">(.*?)</S>', re.DOTALL)
_DESERIAL_STR = re.compile(b"\\x00_\\x00x((?:\\x00[0-9A-Fa-f]){4})\\x00_")

_COLLECTION_TAGS = frozenset(["LST", "IE", "STK", "QUE"])


def has_clixml(text: str) -> bool:
    """Whether the text contains a CLIXML document."""
    return CLIXML_HEADER in text or "<Objs" in text


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _unescape_string(
    value: t.Optional[str],
) -> str:
    if not value:
        return ""

    def rplcr(matchobj: re.Match) -> bytes:
        # The match is the UTF-16-BE encoded hex string of the _xHHHH_ value,
        # decode it back to the UTF-16-BE code unit it represents.
        hex_string = matchobj.group(1).decode("utf-16-be")
        return binascii.unhexlify(hex_string)

    b_value = value.encode("utf-16-be", "surrogatepass")
    b_value = re.sub(_DESERIAL_STR, rplcr, b_value)
    return b_value.decode("utf-16-be", "surrogatepass")


class _CLIXMLReader:
    """Reads the elements of a single <Objs> document.

    Tracks the TN and Obj RefIds so TNRef and Ref elements later in the
    document can be resolved.
    """

    def __init__(self) -> None:
        self.obj: dict[str, t.Any] = {}
        self.tn: dict[str, list[str]] = {}

    def read(
        self,
        element: ET.Element,
    ) -> t.Any:
        tag = _local_name(element.tag)
        text = element.text

        if tag in ["S", "URI", "XD", "SBK", "ToString"]:
            return _unescape_string(text)

        elif tag == "C":
            return chr(int(text or "0"))

        elif tag == "B":
            return (text or "").strip().lower() == "true"

        elif tag in ["By", "SB", "U16", "I16", "U32", "I32", "U64", "I64"]:
            return int(text or "0")

        elif tag in ["Sg", "Db"]:
            return float(text or "0")

        elif tag in ["DT", "TS", "G", "Version", "D"]:
            # Kept as the string representation, D to keep the decimal precision.
            return text or ""

        elif tag == "BA":
            return base64.b64decode(text or "")

        elif tag == "SS":
            return SECURE_STRING_MASK

        elif tag == "Nil":
            return None

        elif tag == "Ref":
            return self.obj.get(element.attrib.get("RefId", ""))

        elif tag == "Obj":
            return self._read_obj(element)

        elif tag in _COLLECTION_TAGS:
            return [self.read(e) for e in element]

        elif tag == "DCT":
            return self._read_dct(element)

        log.debug("Unknown CLIXML element '%s', returning the raw text", tag)
        return text

    def _read_dct(
        self,
        element: ET.Element,
    ) -> dict[t.Any, t.Any]:
        dictionary: dict[t.Any, t.Any] = {}
        for entry in element:
            key: t.Any = None
            value: t.Any = None
            for child in entry:
                name = child.attrib.get("N")
                if name == "Key":
                    key = self.read(child)
                elif name == "Value":
                    value = self.read(child)

            if isinstance(key, (dict, list)):
                key = str(key)
            dictionary[key] = value

        return dictionary

    def _read_types(
        self,
        element: ET.Element,
    ) -> list[str]:
        for child in element:
            tag = _local_name(child.tag)
            if tag == "TN":
                types = [_unescape_string(e.text) for e in child]
                ref_id = child.attrib.get("RefId")
                if ref_id is not None:
                    self.tn[ref_id] = types
                return types

            elif tag == "TNRef":
                return list(self.tn.get(child.attrib.get("RefId", ""), []))

        return []

    def _read_obj(
        self,
        element: ET.Element,
    ) -> t.Any:
        types = self._read_types(element)
        to_string: t.Optional[str] = None
        properties: dict[str, t.Any] = {}
        collection: t.Any = None
        is_collection = False

        for child in element:
            tag = _local_name(child.tag)
            if tag == "ToString":
                to_string = self.read(child)

            elif tag in ["Props", "MS"]:
                for prop in child:
                    name = prop.attrib.get("N")
                    if name is None:
                        continue
                    properties[_unescape_string(name)] = self.read(prop)

            elif tag in _COLLECTION_TAGS or tag == "DCT":
                collection = self.read(child)
                is_collection = True

        obj: t.Any
        if is_collection and not properties:
            obj = collection
        else:
            obj = {}
            if types:
                obj["__typenames"] = types
            obj.update(properties)
            if to_string is not None:
                obj["__toString"] = to_string

        ref_id = element.attrib.get("RefId")
        if ref_id is not None:
            self.obj[ref_id] = obj

        return obj


def parse_clixml(
    text: str,
) -> list[t.Any]:
    """Parse CLIXML into Python values.

    Every <Objs> document in the text is parsed, the '#< CLIXML' header
    lines are ignored.

    Args:
        text: The text containing the CLIXML.

    Returns:
        list[Any]: The values of each child element of every <Objs> document.

    Raises:
        ValueError: The text does not contain valid CLIXML.
    """
    documents = _OBJS_PATTERN.findall(text)
    if not documents:
        if text.replace(CLIXML_HEADER, "").strip():
            raise ValueError("No CLIXML <Objs> document found")
        return []

    values: list[t.Any] = []
    for document in documents:
        try:
            root = ET.fromstring(document)
        except ET.ParseError as e:
            raise ValueError(f"Invalid CLIXML document: {e}") from e

        reader = _CLIXMLReader()
        values.extend(reader.read(e) for e in root)

    log.debug("Parsed %d objects from CLIXML", len(values))
    return values


def _typenames(value: t.Any) -> list[str]:
    if isinstance(value, dict):
        return value.get("__typenames", [])
    return []


def _str_prop(
    value: dict[str, t.Any],
    name: str,
) -> t.Optional[str]:
    prop = value.get(name)
    return prop if isinstance(prop, str) else None


def _to_string_prop(
    value: dict[str, t.Any],
    name: str,
) -> t.Optional[str]:
    prop = value.get(name)
    if isinstance(prop, dict):
        return prop.get("__toString")
    elif isinstance(prop, str):
        return prop
    return None


def _int_prop(
    value: dict[str, t.Any],
    name: str,
    default: int,
) -> int:
    prop = value.get(name)
    if isinstance(prop, bool):
        return default
    elif isinstance(prop, int):
        return prop
    elif isinstance(prop, str):
        try:
            return int(prop)
        except ValueError:
            return default
    return default


def _error_from_obj(
    value: dict[str, t.Any],
) -> ErrorRecord:
    exception_type = "System.Exception"
    message = None

    exception = value.get("Exception")
    if isinstance(exception, dict):
        exception_types = _typenames(exception)
        if exception_types:
            exception_type = exception_types[0]
        message = _str_prop(exception, "Message")

    if message is None:
        message = value.get("__toString") or "Unknown error"

    return ErrorRecord(
        exception_type=exception_type,
        message=message,
        fully_qualified_error_id=_str_prop(value, "FullyQualifiedErrorId"),
        category=_to_string_prop(value, "CategoryInfo"),
        target_object=_str_prop(value, "TargetObject"),
        script_stack_trace=_str_prop(value, "ScriptStackTrace"),
        invocation_info=_to_string_prop(value, "InvocationInfo"),
    )


def parse_error_stream(
    text: str,
) -> list[ErrorRecord]:
    """Get the error records from an error stream.

    Uses the serialized ErrorRecord objects when present, otherwise each
    <S S="Error"> line is treated as a separate error. This never fails,
    invalid CLIXML just results in no records.

    Args:
        text: The stderr text.

    Returns:
        list[ErrorRecord]: The error records found.
    """
    try:
        values = parse_clixml(text)
    except ValueError as e:
        log.debug("Failed to parse error stream as CLIXML: %s", e)
        values = []

    errors = [_error_from_obj(v) for v in values if any("ErrorRecord" in tn for tn in _typenames(v))]

    if not errors:
        for match in _ERROR_STRING_PATTERN.finditer(text):
            message = _unescape_string(unescape(match.group(1))).rstrip("\r\n")
            if message.strip():
                errors.append(ErrorRecord(exception_type=REMOTE_EXCEPTION_TYPE, message=message))

    return errors


def parse_progress_stream(
    text: str,
) -> list[ProgressRecord]:
    """Get the progress records from a CLIXML progress stream."""
    try:
        values = parse_clixml(text)
    except ValueError as e:
        log.debug("Failed to parse progress stream as CLIXML: %s", e)
        return []

    records = []
    for value in values:
        if not any("ProgressRecord" in tn for tn in _typenames(value)):
            continue

        records.append(
            ProgressRecord(
                activity=_str_prop(value, "Activity") or "",
                status_description=_str_prop(value, "StatusDescription") or "",
                percent_complete=_int_prop(value, "PercentComplete", -1),
                seconds_remaining=_int_prop(value, "SecondsRemaining", -1),
                current_operation=_str_prop(value, "CurrentOperation"),
                parent_activity_id=_int_prop(value, "ParentActivityId", -1),
                activity_id=_int_prop(value, "ActivityId", 0),
            )
        )

    return records
