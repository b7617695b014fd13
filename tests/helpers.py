import json


class FakeUpstream:
    """Stands in for UpstreamClient: records queries, answers from a fixed body."""

    def __init__(self, body=b"{}", error=None):
        self.body = body
        self.error = error
        self.queries = []

    async def fetch(self, query):
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        if callable(self.body):
            return self.body(query)
        return self.body

    async def close(self):
        pass


def echo_body(query, status=0, answer=None, authority=None, additional=None, **flags):
    """JSON body echoing the question of an UpstreamQuery, like the real resolver does."""
    params = dict(query.params)
    payload = {
        "Status": status,
        "TC": False,
        "RD": True,
        "RA": True,
        "AD": False,
        "CD": False,
        "Question": [{"name": params["name"], "type": int(params["type"])}],
    }
    payload.update(flags)
    if answer is not None:
        payload["Answer"] = answer
    if authority is not None:
        payload["Authority"] = authority
    if additional is not None:
        payload["Additional"] = additional
    return json.dumps(payload).encode()
