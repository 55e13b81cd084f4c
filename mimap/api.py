"""Single-host operations returning (status, JSON payload) responses."""

from typing import Any, Dict, Optional, Tuple

from .common import Crawler
from .credentials import AppCredentialCache
from .discovery import DEFAULT_MAX_NEW_SERVERS, DiscoveryCrawler
from .federation import fetch_federation
from .instance_meta import fetch_server_info
from .storage import GraphSink

Response = Tuple[int, Dict[str, Any]]


def _invalid_seed(seed_server) -> bool:
    return not seed_server or not isinstance(seed_server, str)


async def federation_endpoint(
    crawler: Crawler,
    seed_server,
    token: Optional[str] = None,
    credentials: Optional[AppCredentialCache] = None,
) -> Response:
    """Federation list of one instance.

    `token` must have been issued by `seed_server`: the caller is in charge
    of this correspondence.
    """
    if _invalid_seed(seed_server):
        return 400, {"error": "seedServer is required"}

    result = await fetch_federation(
        crawler, seed_server.lower(), token=token, credentials=credentials
    )
    return result.to_response()


async def discover_endpoint(
    crawler: Crawler,
    seed_server,
    sink: Optional[GraphSink] = None,
    max_new_servers: int = DEFAULT_MAX_NEW_SERVERS,
) -> Response:
    """Validates a seed instance, discovers its neighbourhood and stores the graph."""
    if _invalid_seed(seed_server):
        return 400, {"error": "seedServer is required"}
    seed_server = seed_server.lower()

    server_info = await fetch_server_info(crawler, seed_server)
    if server_info is None:
        return 400, {"error": "Invalid or unsupported server"}

    discovery = await DiscoveryCrawler(
        crawler, max_new_servers=max_new_servers, progress=False
    ).discover([seed_server])

    if sink is not None:
        sink.upsert_instance(server_info)
        for server in discovery.new_servers:
            sink.upsert_instance(server)
        for edge in discovery.federations:
            sink.upsert_federation(edge)

    return 200, {
        "seedServer": server_info.to_dict(),
        "discovered": len(discovery.new_servers),
        "servers": [server_info.to_dict()]
        + [server.to_dict() for server in discovery.new_servers],
        "federations": [edge.to_dict() for edge in discovery.federations],
    }
