import asyncio
import logging
import signal
from typing import Optional, Set, Tuple

import dns.exception
import dns.flags
import dns.message
import dns.rcode

from core.composer import DNSRequest
from core.proxy import DoHProxy
from core.upstream import UpstreamClient
from utils.config import ProxyConfig


logger = logging.getLogger("dohproxy.dserver")


def _parse_request(data: bytes, compress: bool) -> DNSRequest:
    return DNSRequest(message=dns.message.from_wire(data), compress=compress)


def _formerr_for(data: bytes) -> Optional[bytes]:
    """Bare FORMERR echoing the id of an unparseable packet, or None without one."""
    if len(data) < 2:
        return None
    resp = dns.message.Message(id=int.from_bytes(data[:2], 'big'))
    resp.flags = dns.flags.QR
    resp.set_rcode(dns.rcode.FORMERR)
    return resp.to_wire()


class UDPProxyProtocol(asyncio.DatagramProtocol):
    def __init__(self, proxy: DoHProxy, compress: bool = True):
        self.proxy = proxy
        self.compress = compress
        self.transport = None
        self._tasks: Set[asyncio.Task] = set()

    def connection_made(self, transport):
        self.transport = transport
        logger.debug("UDP listener started")

    def datagram_received(self, data, addr):
        logger.debug(f"Received UDP DNS query from {addr}")
        task = asyncio.create_task(self._handle(data, addr))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def error_received(self, exc):
        logger.debug(f"UDP listener error: {exc}")

    async def _send(self, wire: bytes, addr):
        if self.transport is None or self.transport.is_closing():
            raise ConnectionError("UDP listener is closed")
        self.transport.sendto(wire, addr)

    async def _handle(self, data: bytes, addr):
        try:
            request = _parse_request(data, self.compress)
        except (dns.exception.DNSException, ValueError) as e:
            logger.debug(f"Unparseable UDP DNS query from {addr}: {e}")
            wire = _formerr_for(data)
            if wire is not None:
                try:
                    await self._send(wire, addr)
                except ConnectionError as e:
                    logger.error(f"Error writing DNS response to {addr}: {e}")
            return
        await self.proxy.handle(request, lambda wire: self._send(wire, addr))
        logger.debug(f"Answered UDP DNS query id={request.id} from {addr}")


async def _tcp_handler(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, proxy: DoHProxy, compress: bool = True):
    peer = writer.get_extra_info('peername')
    logger.debug(f"Accepted TCP connection from {peer}")

    async def send(wire: bytes):
        writer.write(len(wire).to_bytes(2, 'big') + wire)
        await writer.drain()

    try:
        # one connection may carry several length-prefixed queries
        while True:
            try:
                length_bytes = await reader.readexactly(2)
                length = int.from_bytes(length_bytes, 'big')
                data = await reader.readexactly(length)
            except asyncio.IncompleteReadError:
                break
            try:
                request = _parse_request(data, compress)
            except (dns.exception.DNSException, ValueError) as e:
                logger.debug(f"Unparseable TCP DNS query from {peer}: {e}")
                wire = _formerr_for(data)
                if wire is not None:
                    await send(wire)
                break
            await proxy.handle(request, send)
            logger.debug(f"Answered TCP DNS query id={request.id} from {peer}")
    except (ConnectionError, OSError) as e:
        logger.error(f"Error handling TCP DNS connection from {peer}: {e}")
    finally:
        try:
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass


async def start_listeners(proxy: DoHProxy, listen_ip: str, listen_port: int, compress: bool = True,
                          tcp_port: Optional[int] = None) -> Tuple[asyncio.DatagramTransport, asyncio.AbstractServer]:
    """Bind the UDP and TCP listeners. `tcp_port` defaults to `listen_port`."""
    loop = asyncio.get_running_loop()

    udp_transport, _ = await loop.create_datagram_endpoint(
        lambda: UDPProxyProtocol(proxy, compress=compress),
        local_addr=(listen_ip, listen_port)
    )
    logger.info(f"DNS UDP listener running on {listen_ip}:{listen_port}")

    tcp_port = listen_port if tcp_port is None else tcp_port
    try:
        server = await asyncio.start_server(lambda r, w: _tcp_handler(r, w, proxy, compress=compress), listen_ip, tcp_port)
    except OSError:
        udp_transport.close()
        raise
    logger.info(f"DNS TCP listener running on {listen_ip}:{tcp_port}")
    return udp_transport, server


async def run_server(config: ProxyConfig, stop: Optional[asyncio.Event] = None):
    """Serve until SIGINT/SIGTERM (or `stop` is set), then close both listeners."""
    upstream = UpstreamClient(timeout=config.timeout)
    proxy = DoHProxy(config, upstream)
    stop = stop or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # no signal support on this loop/platform; rely on KeyboardInterrupt
            pass

    try:
        udp_transport, server = await start_listeners(proxy, config.listen_ip, config.listen_port, config.compress)
    except BaseException:
        await upstream.close()
        raise

    try:
        await stop.wait()
        logger.info("Shutting down DNS listeners")
    finally:
        udp_transport.close()
        # stop accepting; connections already open finish or fail on their own
        server.close()
        await upstream.close()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def run_server_sync(config: ProxyConfig):
    asyncio.run(run_server(config))
