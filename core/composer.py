import logging
from dataclasses import dataclass

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rcode
import dns.rdatatype
import dns.renderer
import dns.rrset

from core.doh_json import JSONResolverResponse
from core.errors import CompositionAlignmentError, MalformedResponseError
from core.records import ON_BAD_RECORD_DROP, synthesize_section


logger = logging.getLogger("dohproxy.composer")


@dataclass
class DNSRequest:
    """An inbound query and the client's name compression preference."""
    message: dns.message.Message
    compress: bool = True

    @property
    def id(self) -> int:
        return self.message.id


@dataclass
class DNSReply:
    message: dns.message.Message
    compress: bool = True

    def to_wire(self) -> bytes:
        return render(self.message, compress=self.compress)


def render(msg: dns.message.Message, compress: bool = True) -> bytes:
    """Render header, question and record sections of `msg`.

    With compress=False every name is written in full.
    """
    r = dns.renderer.Renderer(msg.id, msg.flags, 65535)
    if not compress:
        r.compress = None
    for q in msg.question:
        r.add_question(q.name, q.rdtype, q.rdclass)
    for rrset in msg.answer:
        r.add_rrset(dns.renderer.ANSWER, rrset)
    for rrset in msg.authority:
        r.add_rrset(dns.renderer.AUTHORITY, rrset)
    for rrset in msg.additional:
        r.add_rrset(dns.renderer.ADDITIONAL, rrset)
    r.write_header()
    return r.get_wire()


def _header_flags(reply: JSONResolverResponse) -> int:
    flags = 0
    # known coupling: QR is set only when Status == 0, so any upstream error
    # status also clears the response bit
    if reply.Status == 0:
        flags |= dns.flags.QR
    # never authoritative: AA stays clear
    if reply.TC:
        flags |= dns.flags.TC
    if reply.RD:
        flags |= dns.flags.RD
    if reply.RA:
        flags |= dns.flags.RA
    if reply.AD:
        flags |= dns.flags.AD
    if reply.CD:
        flags |= dns.flags.CD
    return flags


def _questions(request: dns.message.Message, reply: JSONResolverResponse):
    out = []
    for idx, q in enumerate(reply.Question):
        # class is not part of the JSON schema; take it from the request at the same position
        if idx >= len(request.question):
            raise CompositionAlignmentError(
                f"upstream returned {len(reply.Question)} questions, request had {len(request.question)}")
        try:
            name = dns.name.from_text(q.name)
            rdtype = dns.rdatatype.RdataType.make(q.type)
        except (dns.exception.DNSException, ValueError) as e:
            raise MalformedResponseError(f"Question[{idx}]: {e}") from e
        out.append(dns.rrset.RRset(name, request.question[idx].rdclass, rdtype))
    return out


def compose_response(request: DNSRequest, reply: JSONResolverResponse,
                     on_bad_record: str = ON_BAD_RECORD_DROP) -> DNSReply:
    """Build the DNS reply for `request` from a decoded upstream answer."""
    msg = dns.message.Message(id=request.id)
    msg.flags = _header_flags(reply)
    msg.set_opcode(dns.opcode.QUERY)
    # only the 4 header bits survive; extended rcodes would need EDNS
    msg.set_rcode(reply.Status & 0xF)

    msg.question = _questions(request.message, reply)
    msg.answer = synthesize_section(reply.Answer, on_bad_record)
    msg.authority = synthesize_section(reply.Authority, on_bad_record)
    msg.additional = synthesize_section(reply.Additional, on_bad_record)

    logger.debug("composed reply id=%d rcode=%s answers=%d authority=%d additional=%d",
                 msg.id, dns.rcode.to_text(msg.rcode()), len(msg.answer), len(msg.authority), len(msg.additional))
    return DNSReply(message=msg, compress=request.compress)


def make_failure(request: DNSRequest, rcode=dns.rcode.SERVFAIL) -> DNSReply:
    """Conventional failure reply echoing the request's id, opcode and question.

    EDNS is not echoed back.
    """
    try:
        resp = dns.message.make_response(request.message)
        resp.use_edns(False)
    except dns.exception.FormError:
        # the inbound message was itself a response
        resp = dns.message.Message(id=request.id)
        resp.flags = dns.flags.QR
    resp.set_rcode(rcode)
    return DNSReply(message=resp, compress=request.compress)
