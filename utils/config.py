import os
import configparser
from dataclasses import dataclass
from typing import Tuple
from urllib.parse import urlparse

from core.errors import ConfigError
from core.records import BAD_RECORD_POLICIES, ON_BAD_RECORD_DROP


DEFAULT_CONFIG_PATH = 'config/dohproxy.conf'
DEFAULT_ENDPOINT = 'https://dns.google.com/resolve'


@dataclass(frozen=True)
class ProxyConfig:
    listen_ip: str = '0.0.0.0'
    listen_port: int = 53
    endpoint: str = DEFAULT_ENDPOINT
    subnet: str = ''
    debug: bool = False
    verbose: bool = False
    timeout: float = 10.0
    on_bad_record: str = ON_BAD_RECORD_DROP
    compress: bool = True


def parse_address(address: str) -> Tuple[str, int]:
    """Split 'host:port', ':port' or '[v6]:port'. An empty host means all interfaces."""
    address = (address or '').strip()
    host, sep, port = address.rpartition(':')
    if not sep:
        raise ConfigError(f"address {address!r} is missing a port")
    if host.startswith('[') and host.endswith(']'):
        host = host[1:-1]
    elif ':' in host:
        raise ConfigError(f"IPv6 address {address!r} must be bracketed")
    try:
        port_num = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in address {address!r}")
    if not 0 <= port_num <= 65535:
        raise ConfigError(f"port out of range in address {address!r}")
    return host or '0.0.0.0', port_num


def load_config(path=DEFAULT_CONFIG_PATH):
    config = configparser.ConfigParser()
    if not os.path.exists(path):
        # return defaults if config missing
        return {
            'address': ':53',
            'endpoint': DEFAULT_ENDPOINT,
            'subnet': '',
            'timeout': 10.0,
            'on_bad_record': ON_BAD_RECORD_DROP,
            'verbose': False,
            'debug': False,
            'compress': True,
        }
    config.read(path)
    try:
        return {
            'address': config.get('interface', 'address', fallback=':53'),
            'endpoint': config.get('upstream', 'endpoint', fallback=DEFAULT_ENDPOINT).strip(),
            'subnet': config.get('upstream', 'subnet', fallback='').strip(),
            'timeout': config.getfloat('upstream', 'timeout', fallback=10.0),
            'on_bad_record': config.get('upstream', 'on_bad_record', fallback=ON_BAD_RECORD_DROP).strip().lower(),
            'verbose': config.getboolean('logging', 'verbose', fallback=False),
            'debug': config.getboolean('logging', 'debug', fallback=False),
            'compress': config.getboolean('response', 'compress', fallback=True),
        }
    except ValueError as e:
        raise ConfigError(f"{path}: {e}") from e


def build_config(settings: dict) -> ProxyConfig:
    """Validate a settings mapping (see load_config) into a ProxyConfig."""
    endpoint = (settings.get('endpoint') or '').strip()
    if not endpoint:
        raise ConfigError("an upstream endpoint is required")
    parts = urlparse(endpoint)
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        raise ConfigError(f"endpoint {endpoint!r} is not an absolute http(s) URL")

    policy = settings.get('on_bad_record', ON_BAD_RECORD_DROP)
    if policy not in BAD_RECORD_POLICIES:
        raise ConfigError(f"on_bad_record must be one of {', '.join(BAD_RECORD_POLICIES)}, got {policy!r}")

    timeout = float(settings.get('timeout', 10.0))
    if timeout <= 0:
        raise ConfigError("timeout must be positive")

    listen_ip, listen_port = parse_address(settings.get('address', ':53'))
    return ProxyConfig(
        listen_ip=listen_ip,
        listen_port=listen_port,
        endpoint=endpoint,
        subnet=settings.get('subnet') or '',
        debug=bool(settings.get('debug', False)),
        verbose=bool(settings.get('verbose', False)),
        timeout=timeout,
        on_bad_record=policy,
        compress=bool(settings.get('compress', True)),
    )
