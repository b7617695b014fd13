import logging

import dns.name
import dns.rdataclass
import dns.rdatatype
import pytest

from core.doh_json import JSONRecord
from core.errors import RecordSynthesisError
from core.records import ON_BAD_RECORD_FAIL, record_line, synthesize_record, synthesize_section


def test_address_record():
    rrset = synthesize_record(JSONRecord(name="example.com.", type=1, TTL=300, data="93.184.216.34"))
    assert rrset.name == dns.name.from_text("example.com.")
    assert rrset.rdclass == dns.rdataclass.IN
    assert rrset.rdtype == dns.rdatatype.A
    assert rrset.ttl == 300
    assert [rd.address for rd in rrset] == ["93.184.216.34"]


def test_record_line():
    line = record_line(JSONRecord(name="example.com.", type=28, TTL=60, data="2606:2800:220:1::"))
    assert line == "example.com. 60 IN AAAA 2606:2800:220:1::"


def test_unknown_type_uses_generic_mnemonic():
    assert record_line(JSONRecord(name="x.", type=65280, TTL=1, data=r"\# 2 abcd")) == r"x. 1 IN TYPE65280 \# 2 abcd"
    rrset = synthesize_record(JSONRecord(name="x.", type=65280, TTL=1, data=r"\# 2 abcd"))
    assert rrset.rdtype == 65280
    assert len(rrset) == 1


def test_relative_owner_is_made_absolute():
    rrset = synthesize_record(JSONRecord(name="example.com", type=1, TTL=5, data="192.0.2.1"))
    assert rrset.name.is_absolute()
    assert rrset.name == dns.name.from_text("example.com.")


def test_name_bearing_rdata():
    cname = synthesize_record(JSONRecord(name="www.example.com.", type=5, TTL=10, data="example.com."))
    assert list(cname)[0].target == dns.name.from_text("example.com.")

    mx = list(synthesize_record(JSONRecord(name="example.com.", type=15, TTL=10, data="10 mail.example.com.")))[0]
    assert mx.preference == 10
    assert mx.exchange == dns.name.from_text("mail.example.com.")


def test_quoted_txt():
    rrset = synthesize_record(JSONRecord(name="example.com.", type=16, TTL=10, data='"v=spf1 -all"'))
    assert list(rrset)[0].strings == (b"v=spf1 -all",)


def test_soa_in_authority_form():
    data = "ns.icann.org. noc.dns.icann.org. 2020080302 7200 3600 1209600 3600"
    soa = list(synthesize_record(JSONRecord(name="example.com.", type=6, TTL=3600, data=data)))[0]
    assert soa.serial == 2020080302
    assert soa.minimum == 3600


@pytest.mark.parametrize("record", [
    JSONRecord(name="example.com.", type=1, TTL=300, data="not-an-address"),
    JSONRecord(name="example.com.", type=1, TTL=300, data=""),
    JSONRecord(name="example.com.", type=1, TTL=-5, data="192.0.2.1"),
    JSONRecord(name="example.com.", type=1, TTL=300, data="192.0.2.1 extra"),
    JSONRecord(name="example.com.", type=1, TTL=300, data="192.0.2.1\nexample.org. 1 IN A 192.0.2.2"),
    JSONRecord(name="example.com.", type=70000, TTL=300, data="192.0.2.1"),
])
def test_invalid_records(record):
    with pytest.raises(RecordSynthesisError):
        synthesize_record(record)


def test_section_drops_bad_records_in_order(caplog):
    records = [
        JSONRecord(name="a.example.", type=1, TTL=1, data="192.0.2.1"),
        JSONRecord(name="b.example.", type=1, TTL=1, data="bogus"),
        JSONRecord(name="c.example.", type=1, TTL=1, data="192.0.2.3"),
    ]
    with caplog.at_level(logging.WARNING, logger="dohproxy.records"):
        section = synthesize_section(records)
    assert [str(rrset.name) for rrset in section] == ["a.example.", "c.example."]
    assert "Dropping upstream record" in caplog.text


def test_section_fail_policy():
    records = [
        JSONRecord(name="a.example.", type=1, TTL=1, data="192.0.2.1"),
        JSONRecord(name="b.example.", type=1, TTL=1, data="bogus"),
    ]
    with pytest.raises(RecordSynthesisError) as exc:
        synthesize_section(records, ON_BAD_RECORD_FAIL)
    assert exc.value.line == "b.example. 1 IN A bogus"
