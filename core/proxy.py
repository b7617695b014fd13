import logging
from typing import Awaitable, Callable

import dns.rcode

from core.composer import DNSReply, DNSRequest, compose_response, make_failure
from core.doh_json import decode_response
from core.errors import (
    CompositionAlignmentError,
    MalformedResponseError,
    ProxyError,
    RecordSynthesisError,
    RequestConstructionError,
    UpstreamTransportError,
    WriteError,
)
from core.query import encode_query
from core.upstream import UpstreamClient
from utils.config import ProxyConfig


logger = logging.getLogger("dohproxy.proxy")

ReplyWriter = Callable[[bytes], Awaitable[None]]

_STAGE_MESSAGES = (
    (RequestConstructionError, "Error setting up request"),
    (UpstreamTransportError, "Error sending DNS request"),
    (MalformedResponseError, "Malformed JSON DNS response"),
    (RecordSynthesisError, "Bad record in DNS response"),
    (CompositionAlignmentError, "Cannot align DNS response questions"),
)


class DoHProxy:
    """Forwards one DNS request at a time to the JSON DoH endpoint.

    Holds only read-only state (config and the HTTP client), so concurrent
    exchanges never share anything mutable.
    """

    def __init__(self, config: ProxyConfig, upstream: UpstreamClient):
        self.config = config
        self.upstream = upstream

    async def resolve(self, request: DNSRequest) -> DNSReply:
        """Encode, fetch, decode and compose. Raises ProxyError on any stage failure."""
        query = encode_query(request.message, self.config.endpoint, self.config.subnet)
        if self.config.debug:
            logger.debug(query.url)
        body = await self.upstream.fetch(query)
        reply = decode_response(body)
        return compose_response(request, reply, self.config.on_bad_record)

    async def handle(self, request: DNSRequest, write: ReplyWriter):
        """Answer `request` through `write` exactly once.

        Stage failures become SERVFAIL. A failing write is only logged; the
        client cannot be reached any more.
        """
        try:
            reply = await self.resolve(request)
            wire = reply.to_wire()
        except ProxyError as e:
            logger.error("%s: %s", _stage_message(e), e)
            wire = make_failure(request, dns.rcode.SERVFAIL).to_wire()
        except Exception:
            logger.exception("Unexpected error proxying request id=%d", request.id)
            wire = make_failure(request, dns.rcode.SERVFAIL).to_wire()

        try:
            await _write(write, wire)
        except WriteError as e:
            logger.error("Error writing DNS response: %s", e)


def _stage_message(exc: ProxyError) -> str:
    for kind, message in _STAGE_MESSAGES:
        if isinstance(exc, kind):
            return message
    return "Error proxying DNS request"


async def _write(write: ReplyWriter, wire: bytes):
    try:
        await write(wire)
    except WriteError:
        raise
    except Exception as e:
        raise WriteError(f"{type(e).__name__}: {e}") from e
