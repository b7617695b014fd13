import logging
from typing import Iterable, List

import dns.exception
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import dns.tokenizer
import dns.ttl

from core.doh_json import JSONRecord
from core.errors import RecordSynthesisError


logger = logging.getLogger("dohproxy.records")

ON_BAD_RECORD_DROP = 'drop'
ON_BAD_RECORD_FAIL = 'fail'
BAD_RECORD_POLICIES = (ON_BAD_RECORD_DROP, ON_BAD_RECORD_FAIL)


def record_line(record: JSONRecord) -> str:
    """Master-file line for a JSON record: '<name> <ttl> IN <TYPE> <data>'.

    The JSON schema carries no class, so the record is always placed in IN.
    """
    rdtype = dns.rdatatype.to_text(record.type)
    rdclass = dns.rdataclass.to_text(dns.rdataclass.IN)
    return f"{record.name} {record.TTL} {rdclass} {rdtype} {record.data}"


def synthesize_record(record: JSONRecord) -> dns.rrset.RRset:
    """Parse the master-file line of a JSON record into a one-record RRset.

    `data` must already be in presentation format for the record type; no
    checks are made beyond what the dnspython parser enforces.
    """
    try:
        line = record_line(record)
    except ValueError as e:
        raise RecordSynthesisError(f"{record.name} {record.TTL} IN TYPE{record.type} {record.data}", e) from e
    if '\n' in line or '\r' in line:
        raise RecordSynthesisError(line, "embedded line break")

    try:
        tok = dns.tokenizer.Tokenizer(line)
        name = tok.get_name(origin=dns.name.root)
        ttl = dns.ttl.from_text(tok.get_string())
        rdclass = dns.rdataclass.from_text(tok.get_string())
        rdtype = dns.rdatatype.from_text(tok.get_string())
        rd = dns.rdata.from_text(rdclass, rdtype, tok, origin=dns.name.root, relativize=False)
    except (dns.exception.DNSException, ValueError) as e:
        raise RecordSynthesisError(line, e) from e

    rrset = dns.rrset.RRset(name, rdclass, rdtype)
    rrset.add(rd, ttl)
    return rrset


def synthesize_section(records: Iterable[JSONRecord], on_bad_record: str = ON_BAD_RECORD_DROP) -> List[dns.rrset.RRset]:
    """Synthesize records in order.

    With the 'drop' policy unparseable records are skipped and logged; with
    'fail' the first RecordSynthesisError propagates.
    """
    out = []
    for record in records:
        try:
            out.append(synthesize_record(record))
        except RecordSynthesisError as e:
            if on_bad_record == ON_BAD_RECORD_FAIL:
                raise
            logger.warning("Dropping upstream record: %s", e)
    return out
