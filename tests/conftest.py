import dns.message
import pytest

from core.composer import DNSRequest
from core.proxy import DoHProxy
from utils.config import ProxyConfig


@pytest.fixture
def request_factory():
    def make(qname="example.com.", rdtype="A", rdclass="IN", msg_id=0x1234, compress=True):
        msg = dns.message.make_query(qname, rdtype, rdclass)
        msg.id = msg_id
        return DNSRequest(message=msg, compress=compress)
    return make


@pytest.fixture
def config():
    return ProxyConfig(endpoint="https://dns.google.com/resolve")


@pytest.fixture
def make_proxy(config):
    def make(upstream, **overrides):
        cfg = ProxyConfig(**{**vars(config), **overrides})
        return DoHProxy(cfg, upstream)
    return make
