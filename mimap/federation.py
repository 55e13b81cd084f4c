"""Federation list of a Misskey instance (/api/federation/instances)."""

import asyncio

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .common import Crawler, ConnectionFailure
from .credentials import AppCredentialCache
from .models import FederationEdge

FEDERATION_API = "/api/federation/instances"
MAX_PAGE_SIZE = 30  # Maximum accepted by the Misskey API
MAX_PAGES = 10
SORT_ORDER = "+pubSub"


class FederationErrorCode(str, Enum):
    CREDENTIAL_REQUIRED = "CREDENTIAL_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FETCH_FAILED = "FETCH_FAILED"
    CONNECTION_FAILED = "CONNECTION_FAILED"


@dataclass
class FederationError:
    host: str
    code: FederationErrorCode
    message: str
    status: int
    authenticated: bool = False

    def to_response(self) -> Tuple[int, Dict[str, Any]]:
        return self.status, {
            "error": self.code.value,
            "message": self.message,
            "authenticated": self.authenticated,
        }


@dataclass
class FederationList:
    host: str
    edges: List[FederationEdge] = field(default_factory=list)
    pages: int = 0
    # A later page failed or the deadline passed: the list is partial.
    truncated: bool = False

    @property
    def normal_edges(self) -> List[FederationEdge]:
        return [
            edge for edge in self.edges if not edge.is_blocked and not edge.is_suspended
        ]

    @property
    def blocked_edges(self) -> List[FederationEdge]:
        return [edge for edge in self.edges if edge.is_blocked or edge.is_suspended]

    def to_response(self) -> Tuple[int, Dict[str, Any]]:
        return 200, {"federations": [edge.to_dict() for edge in self.edges]}


FederationResult = Union[FederationList, FederationError]


def remote_error_code(data) -> Optional[str]:
    """Extracts the code of a Misskey error payload ({"error": {"code": ...}})."""
    if not isinstance(data, dict):
        return None
    error = data.get("error")
    if not isinstance(error, dict):
        return None
    code = error.get("code")
    return code if isinstance(code, str) else None


def _count(row: Dict[str, Any], key: str) -> int:
    value = row.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _flag(row: Dict[str, Any], key: str, default: bool) -> bool:
    value = row.get(key)
    return value if isinstance(value, bool) else default


def _row_host(row) -> Optional[str]:
    if not isinstance(row, dict):
        return None
    host = row.get("host")
    if not isinstance(host, str) or not host:
        return None
    return host.lower()


def _normal_edges(source: str, rows: List[Any]) -> List[FederationEdge]:
    edges = []
    for row in rows:
        target = _row_host(row)
        if target is None:
            continue
        if _flag(row, "isBlocked", False) or _flag(row, "isSuspended", False):
            continue
        edges.append(
            FederationEdge(
                source_host=source,
                target_host=target,
                users_count=_count(row, "usersCount"),
                notes_count=_count(row, "notesCount"),
            )
        )
    return edges


def _blocked_edges(source: str, rows: List[Any]) -> List[FederationEdge]:
    edges = []
    for row in rows:
        target = _row_host(row)
        if target is None:
            continue
        edges.append(
            FederationEdge(
                source_host=source,
                target_host=target,
                users_count=_count(row, "usersCount"),
                notes_count=_count(row, "notesCount"),
                is_blocked=_flag(row, "isBlocked", True),
                is_suspended=_flag(row, "isSuspended", False),
            )
        )
    return edges


def _authorization_error(
    host: str,
    code: str,
    token: Optional[str],
    credentials: Optional[AppCredentialCache],
) -> FederationError:
    if code == FederationErrorCode.CREDENTIAL_REQUIRED.value and token is None:
        return FederationError(
            host=host,
            code=FederationErrorCode.CREDENTIAL_REQUIRED,
            message=f"{host} does not publish its federation data (authentication needed)",
            status=403,
            authenticated=False,
        )

    if credentials is not None:
        # The next login registers a new application with the right permissions
        credentials.invalidate(host)

    if code == FederationErrorCode.CREDENTIAL_REQUIRED.value:
        message = (
            f"{host} refused to show its federation data to this account "
            "(permission insufficient)"
        )
    else:
        message = (
            f"The application registered on {host} lacks the permission "
            "to read federation data, please log in again"
        )
    return FederationError(
        host=host,
        code=FederationErrorCode.PERMISSION_DENIED,
        message=message,
        status=403,
        authenticated=token is not None,
    )


def _deadline_passed(deadline: Optional[float]) -> bool:
    return deadline is not None and asyncio.get_running_loop().time() >= deadline


async def _fetch_blocked_rows(
    crawler: Crawler, host: str, token: Optional[str]
) -> List[Any]:
    body: Dict[str, Any] = {"limit": MAX_PAGE_SIZE, "blocked": True}
    if token is not None:
        body["i"] = token
    try:
        status, data = await crawler._request_json(
            "https://" + host + FEDERATION_API, body=body, op="POST"
        )
    except ConnectionFailure as err:
        crawler.logger.debug("Instance %s: blocked list unavailable (%s)", host, str(err))
        return []
    if status != 200 or not isinstance(data, list):
        crawler.logger.debug(
            "Instance %s: blocked list unavailable (code %d)", host, status
        )
        return []
    return data


async def fetch_federation(
    crawler: Crawler,
    host: str,
    token: Optional[str] = None,
    credentials: Optional[AppCredentialCache] = None,
    deadline: Optional[float] = None,
) -> FederationResult:
    """Fetches the federated instances known by `host`.

    Args:
        crawler (Crawler): HTTP crawler
        host (str): hostname of the observing instance
        token (Optional[str], optional): access token issued by `host`. The caller
            guarantees that the token belongs to this host. Defaults to None.
        credentials (Optional[AppCredentialCache], optional): application credentials
            invalidated on PERMISSION_DENIED. Defaults to None.
        deadline (Optional[float], optional): event loop time after which no other
            page is requested. Defaults to None.

    Returns:
        FederationResult: the edges observed by `host` or the reason of the failure.
    """
    rows: List[Any] = []
    result = FederationList(host=host)
    url = "https://" + host + FEDERATION_API

    try:
        for page in range(MAX_PAGES):
            if page > 0 and _deadline_passed(deadline):
                crawler.logger.debug("Instance %s: deadline reached at page %d", host, page)
                result.truncated = True
                break

            body: Dict[str, Any] = {
                "limit": MAX_PAGE_SIZE,
                "offset": page * MAX_PAGE_SIZE,
                "sort": SORT_ORDER,
            }
            if token is not None:
                body["i"] = token

            status, data = await crawler._request_json(url, body=body, op="POST")
            result.pages += 1

            if status != 200 or not isinstance(data, list):
                code = remote_error_code(data)
                if code in (
                    FederationErrorCode.CREDENTIAL_REQUIRED.value,
                    FederationErrorCode.PERMISSION_DENIED.value,
                ):
                    error = _authorization_error(host, code, token, credentials)
                    crawler.logger.warning("%s", error.message)
                    return error

                if page == 0:
                    crawler.logger.warning(
                        "Instance %s: federation list unavailable (code %d)", host, status
                    )
                    return FederationError(
                        host=host,
                        code=FederationErrorCode.FETCH_FAILED,
                        message=f"Could not fetch federation data from {host} ({status})",
                        status=status if status != 200 else 502,
                        authenticated=token is not None,
                    )

                crawler.logger.info(
                    "Instance %s: page %d failed (code %d), keeping %d rows",
                    host,
                    page + 1,
                    status,
                    len(rows),
                )
                result.truncated = True
                break

            rows.extend(data)

            if len(data) < MAX_PAGE_SIZE:
                break
    except ConnectionFailure as err:
        crawler.logger.warning("Connection to %s failed: %s", host, str(err))
        return FederationError(
            host=host,
            code=FederationErrorCode.CONNECTION_FAILED,
            message=f"Connection to {host} failed",
            status=500,
            authenticated=token is not None,
        )

    result.edges = _normal_edges(host, rows)
    if not _deadline_passed(deadline):
        blocked_rows = await _fetch_blocked_rows(crawler, host, token)
        result.edges += _blocked_edges(host, blocked_rows)

    crawler.logger.debug(
        "Instance %s: %d edges in %d pages", host, len(result.edges), result.pages
    )
    return result
