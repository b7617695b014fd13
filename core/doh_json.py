import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Union

from core.errors import MalformedResponseError


logger = logging.getLogger("dohproxy.doh_json")


@dataclass(frozen=True)
class JSONQuestion:
    name: str = ""
    type: int = 0


@dataclass(frozen=True)
class JSONRecord:
    name: str = ""
    type: int = 0
    TTL: int = 0
    data: str = ""


@dataclass(frozen=True)
class JSONResolverResponse:
    """Rough translation of the JSON DNS-over-HTTPS API (dns.google.com/resolve).

    Every field is optional; absent or null values fall back to their zero value
    so that differently shaped provider replies still decode.
    """
    Status: int = 0
    TC: bool = False
    RD: bool = False
    RA: bool = False
    AD: bool = False
    CD: bool = False
    Question: List[JSONQuestion] = field(default_factory=list)
    Answer: List[JSONRecord] = field(default_factory=list)
    Authority: List[JSONRecord] = field(default_factory=list)
    Additional: List[JSONRecord] = field(default_factory=list)
    edns_client_subnet: str = ""
    Comment: str = ""


def _field(obj: dict, key: str, kind, default, where: str):
    value = obj.get(key)
    if value is None:
        return default
    # bool is a subclass of int; a JSON true is never a valid Status or TTL
    if kind is int and isinstance(value, bool):
        raise MalformedResponseError(f"{where}{key}: expected integer, got boolean")
    if not isinstance(value, kind):
        raise MalformedResponseError(f"{where}{key}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _entries(obj: dict, key: str) -> List[dict]:
    items = _field(obj, key, list, [], "")
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise MalformedResponseError(f"{key}[{idx}]: expected object, got {type(item).__name__}")
    return items


def _question(item: dict, where: str) -> JSONQuestion:
    return JSONQuestion(
        name=_field(item, "name", str, "", where),
        type=_field(item, "type", int, 0, where),
    )


def _record(item: dict, where: str) -> JSONRecord:
    return JSONRecord(
        name=_field(item, "name", str, "", where),
        type=_field(item, "type", int, 0, where),
        TTL=_field(item, "TTL", int, 0, where),
        data=_field(item, "data", str, "", where),
    )


def decode_response(body: Union[bytes, str]) -> JSONResolverResponse:
    """Parse a provider JSON body into a JSONResolverResponse.

    Raises MalformedResponseError when the body is not JSON or a field has the
    wrong JSON type.
    """
    try:
        payload: Any = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedResponseError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedResponseError(f"expected JSON object, got {type(payload).__name__}")

    resp = JSONResolverResponse(
        Status=_field(payload, "Status", int, 0, ""),
        TC=_field(payload, "TC", bool, False, ""),
        RD=_field(payload, "RD", bool, False, ""),
        RA=_field(payload, "RA", bool, False, ""),
        AD=_field(payload, "AD", bool, False, ""),
        CD=_field(payload, "CD", bool, False, ""),
        Question=[_question(q, f"Question[{i}].") for i, q in enumerate(_entries(payload, "Question"))],
        Answer=[_record(r, f"Answer[{i}].") for i, r in enumerate(_entries(payload, "Answer"))],
        Authority=[_record(r, f"Authority[{i}].") for i, r in enumerate(_entries(payload, "Authority"))],
        Additional=[_record(r, f"Additional[{i}].") for i, r in enumerate(_entries(payload, "Additional"))],
        edns_client_subnet=_field(payload, "edns_client_subnet", str, "", ""),
        Comment=_field(payload, "Comment", str, "", ""),
    )
    if resp.Comment:
        logger.debug("upstream comment: %s", resp.Comment)
    return resp
