from dataclasses import dataclass
from typing import List, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import dns.message

from core.errors import RequestConstructionError


@dataclass(frozen=True)
class UpstreamQuery:
    """A GET against the JSON DoH endpoint: base URL plus ordered query parameters."""
    endpoint: str
    params: Tuple[Tuple[str, str], ...]

    @property
    def url(self) -> str:
        parts = urlparse(self.endpoint)
        return urlunparse(parts._replace(query=urlencode(self.params)))


def _validate_endpoint(endpoint: str):
    try:
        parts = urlparse(endpoint)
        parts.port  # raises ValueError on a bad port
    except ValueError as e:
        raise RequestConstructionError(f"invalid endpoint {endpoint!r}: {e}") from e
    if parts.scheme not in ('http', 'https') or not parts.hostname:
        raise RequestConstructionError(f"invalid endpoint {endpoint!r}: need an absolute http(s) URL")
    return parts


def encode_query(request: dns.message.Message, endpoint: str, subnet: str = "") -> UpstreamQuery:
    """Build the upstream query for the first question of `request`.

    The name is passed exactly as it appears in presentation form, trailing dot
    included. Further questions are never forwarded; the JSON API takes one.
    """
    parts = _validate_endpoint(endpoint)
    if not request.question:
        raise RequestConstructionError("request carries no question")

    question = request.question[0]
    # keep any parameters already present on the configured endpoint
    params: List[Tuple[str, str]] = parse_qsl(parts.query, keep_blank_values=True)
    params.append(('name', question.name.to_text()))
    params.append(('type', str(int(question.rdtype))))
    if subnet:
        params.append(('edns_client_subnet', subnet))

    base = urlunparse(parts._replace(query='', fragment=''))
    return UpstreamQuery(endpoint=base, params=tuple(params))
