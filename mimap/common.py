"Base crawler classes"

import asyncio
import json
import logging

from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import colorlog
import requests


class CrawlerException(Exception):
    """Base exception class for the crawlers"""

    def __init__(self, err):
        self.msg = err

    def __str__(self):
        return self.msg


class ConnectionFailure(CrawlerException):
    """Transport-level failure (DNS, TLS, refused connection, timeout)"""


FEDIVERSE_OBSERVER_API = "https://api.fediverse.observer"


def observer_domains(data: Any) -> List[str]:
    """Extracts the lower-cased domains of a Fediverse Observer answer.

    Raises:
        CrawlerException: if the answer does not hold a list of nodes.
    """
    try:
        nodes = data["data"]["nodes"]
        return [instance["domain"].lower() for instance in nodes]
    except (KeyError, TypeError, AttributeError) as err:
        raise CrawlerException(
            f"Invalid answer from the Fediverse Observer: {err!r}"
        ) from err


async def fetch_fediverse_instance_list(software, url=FEDIVERSE_OBSERVER_API):
    # GraphQL query
    body = f"""{{
        nodes(softwarename:"{software}", status:"UP") {{
            domain
        }}
        }}"""

    try:
        async with aiohttp.ClientSession() as session:
            resp = await session.post(
                url, json={"query": body}, timeout=aiohttp.ClientTimeout(total=300)
            )
            data = await resp.read()
            data = json.loads(data)
    except json.decoder.JSONDecodeError:  # Sometimes, Cloudflare blocks aiohttp
        resp = requests.post(url, json={"query": body}, timeout=300)
        try:
            data = resp.json()
        except ValueError as err:
            raise CrawlerException(
                "The Fediverse Observer did not answer with JSON"
            ) from err
    return observer_domains(data)


def setup_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    logger = colorlog.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers = []  # Reset handlers
    handler = colorlog.StreamHandler()
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s[%(asctime)s %(levelname)s]%(reset)s %(white)s%(message)s",
            datefmt="%H:%M:%S",
            reset=True,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red",
            },
        )
    )
    handler.setLevel(logging.INFO)
    logger.addHandler(handler)

    if log_file is not None:
        fhandler = logging.FileHandler(log_file)
        fhandler.setFormatter(
            logging.Formatter("[%(asctime)s %(levelname)s] %(message)s")
        )
        fhandler.setLevel(logging.DEBUG)
        logger.addHandler(fhandler)
    return logger


class Crawler:
    """HTTP plumbing shared by every Misskey fetcher.

    The crawler holds no per-host state: it only owns the aiohttp session,
    the connection semaphore and the logger. Fetchers are plain coroutines
    taking the crawler as first argument.
    """

    USER_AGENT = "mimap, the Misskey Federation Mapper"
    NB_SEMAPHORE: int = 20
    REQUEST_TIMEOUT: float = 30

    def __init__(
        self,
        request_timeout: Optional[float] = None,
        nb_semaphore: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if request_timeout is not None:
            self.REQUEST_TIMEOUT = request_timeout
        if nb_semaphore is not None:
            self.NB_SEMAPHORE = nb_semaphore

        # Load balancing
        self.concurrent_connection_sem = asyncio.Semaphore(self.NB_SEMAPHORE)

        self._session: Optional[aiohttp.ClientSession] = None

        if logger is None:
            logger = logging.getLogger("mimap")
        self.logger = logger

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": self.USER_AGENT},
                timeout=aiohttp.ClientTimeout(total=self.REQUEST_TIMEOUT),
            )
        return self._session

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args, **kwargs):
        await self.close()

    async def _request_json(
        self,
        url: str,
        body: Optional[Dict[str, Any]] = None,
        op: str = "GET",
    ) -> Tuple[int, Any]:
        """Query an instance API and returns the status along with the decoded JSON.

        Args:
            url (str): URL of the API endpoint
            body (Optional[Dict[str, Any]], optional): JSON body of a POST query. Defaults to None.
            op (str, optional): HTTP method ("GET" or "POST"). Defaults to "GET".

        Raises:
            ConnectionFailure: if the connection itself fails or times out.

        Returns:
            Tuple[int, Any]: HTTP status and JSON payload (None if the body is not valid JSON).
        """
        self.logger.debug("Fetching %s [op:%s] [body:%s]", url, op, str(body))

        if op == "GET":
            req_func = self.session.get
        elif op == "POST":
            req_func = self.session.post
        else:
            raise NotImplementedError

        async with self.concurrent_connection_sem:
            try:
                async with req_func(
                    url, json=body, headers={"Accept": "application/json"}
                ) as resp:
                    data = await resp.read()
                    status = resp.status
            except aiohttp.ClientError as err:
                raise ConnectionFailure(f"{err}") from err
            except asyncio.TimeoutError as err:
                raise ConnectionFailure(f"Connection to {url} timed out") from err
            except ValueError as err:
                if err.args and err.args[0] == "Can redirect only to http or https":
                    raise ConnectionFailure("Invalid redirect") from err
                raise

        try:
            return status, json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self.logger.debug("Cannot decode JSON on %s (code %d)", url, status)
            return status, None

    async def _fetch_json(
        self,
        url: str,
        body: Optional[Dict[str, Any]] = None,
        op: str = "GET",
    ) -> Any:
        """Query an instance API and returns the resulting JSON.

        Raises:
            CrawlerException: if the HTTP request fails.
        """
        status, data = await self._request_json(url, body=body, op=op)
        if status != 200:
            err_msg = f"Error code {str(status)} on {url}"
            self.logger.debug(err_msg)
            raise CrawlerException(err_msg)
        if data is None:
            raise CrawlerException(f"Cannot decode JSON on {url}")
        return data
