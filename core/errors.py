class ProxyError(Exception):
    """Base class for failures of a single query/response exchange."""


class ConfigError(Exception):
    """Invalid startup configuration. Fatal to the process."""


class RequestConstructionError(ProxyError):
    pass


class UpstreamTransportError(ProxyError):
    pass


class MalformedResponseError(ProxyError):
    pass


class RecordSynthesisError(ProxyError):
    def __init__(self, line: str, reason):
        super().__init__(f"cannot parse record '{line}': {reason}")
        self.line = line
        self.reason = reason


class CompositionAlignmentError(ProxyError):
    pass


class WriteError(ProxyError):
    pass
