"""
Shared fixtures: a crawler answering from an in-memory Misskey network.

Run: python -m pytest tests -v
"""

import logging
import sys

from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from mimap.common import ConnectionFailure, Crawler
from mimap.federation import FEDERATION_API


class FakeCrawler(Crawler):
    """Crawler whose HTTP layer is replaced by a routing table.

    Routes map (method, url) to a (status, payload) tuple, an exception, or a
    callable receiving the JSON body and returning one of those. Unknown
    routes behave like unreachable hosts.
    """

    def __init__(self):
        super().__init__(logger=logging.getLogger("mimap.tests"))
        self.routes = {}
        self.requests = []

    async def _request_json(self, url, body=None, op="GET"):
        self.requests.append((op, url, body))
        response = self.routes.get((op, url))
        if response is None:
            raise ConnectionFailure(f"Cannot connect to host of {url}")
        if callable(response):
            response = response(body)
        if isinstance(response, Exception):
            raise response
        return response

    def requests_to(self, url):
        return [request for request in self.requests if request[1] == url]

    def add_instance(self, host, meta=None, software="misskey", version="2025.1.0"):
        nodeinfo_url = f"https://{host}/nodeinfo/2.1"
        self.routes[("GET", f"https://{host}/.well-known/nodeinfo")] = (
            200,
            {
                "links": [
                    {
                        "rel": "http://nodeinfo.diaspora.software/ns/schema/2.1",
                        "href": nodeinfo_url,
                    }
                ]
            },
        )
        self.routes[("GET", nodeinfo_url)] = (
            200,
            {"software": {"name": software, "version": version}},
        )
        self.routes[("POST", f"https://{host}/api/meta")] = (200, meta or {})

    def add_federation(self, host, rows, blocked=None):
        def handler(body):
            if body.get("blocked"):
                return 200, list(blocked or [])
            offset = body.get("offset", 0)
            return 200, rows[offset : offset + body["limit"]]

        self.routes[("POST", f"https://{host}{FEDERATION_API}")] = handler


def federation_row(host, **kwargs):
    row = {
        "host": host,
        "usersCount": 10,
        "notesCount": 100,
        "isBlocked": False,
        "isSuspended": False,
    }
    row.update(kwargs)
    return row


@pytest.fixture
def crawler():
    return FakeCrawler()


@pytest.fixture
def row():
    return federation_row
