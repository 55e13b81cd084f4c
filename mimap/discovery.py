"""Breadth-first discovery of Misskey instances."""

import asyncio

from typing import Dict, Iterable, List, Optional, Set

from tqdm.asyncio import tqdm

from .classifiers import is_excluded_domain, is_japanese_server
from .common import Crawler
from .federation import FederationError, fetch_federation
from .instance_meta import fetch_server_info
from .models import DiscoveryResult, FederationEdge, Instance

SEED_SERVERS = ["misskey.io"]
DEFAULT_MAX_NEW_SERVERS = 50


class DiscoveryCrawler:
    """Expands the graph from a frontier of known instances.

    The state (discovered hosts, lookup results, cap) lives for one `discover`
    call and is only mutated while holding `self._lock`, so the frontier can
    be crawled by several workers without exceeding `max_new_servers`.
    """

    def __init__(
        self,
        crawler: Crawler,
        max_new_servers: int = DEFAULT_MAX_NEW_SERVERS,
        concurrency: int = 1,
        deadline: Optional[float] = None,
        max_depth: int = 1,
        progress: bool = True,
    ):
        if max_new_servers < 0:
            raise ValueError("max_new_servers cannot be negative")
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")

        self.crawler = crawler
        self.logger = crawler.logger
        self.max_new_servers = max_new_servers
        self.concurrency = concurrency
        self.deadline = deadline
        self.max_depth = max_depth
        self.progress = progress

        self._reset()

    def _reset(self):
        self.known_hosts: Set[str] = set()
        self.discovered: Dict[str, Instance] = {}
        self._pending: Set[str] = set()
        self._lookups: Dict[str, "asyncio.Task[Optional[Instance]]"] = {}
        self._lock = asyncio.Lock()
        self._deadline_time: Optional[float] = None

    def _deadline_passed(self) -> bool:
        return (
            self._deadline_time is not None
            and asyncio.get_running_loop().time() >= self._deadline_time
        )

    def _cap_reached(self) -> bool:
        # Pending lookups hold a slot until they complete
        return len(self.discovered) + len(self._pending) >= self.max_new_servers

    async def _examine(self, host: str) -> Optional[Instance]:
        info = await fetch_server_info(self.crawler, host)
        if info is None:
            self.logger.debug("Instance %s: unsupported or unreachable", host)
            return None
        if not is_japanese_server(info):
            self.logger.debug("Instance %s: not a Japanese-speaking instance", host)
            return None
        return info

    async def _inspect_target(self, edge: FederationEdge, result: DiscoveryResult):
        target = edge.target_host
        owner = False

        async with self._lock:
            if target in self.known_hosts or target in self.discovered:
                result.federations.append(edge)
                return

            if is_excluded_domain(target):
                return

            if self._cap_reached() or self._deadline_passed():
                result.federations.append(edge)
                return

            # A host is examined at most once per discovery
            lookup = self._lookups.get(target)
            if lookup is None:
                lookup = asyncio.ensure_future(self._examine(target))
                self._lookups[target] = lookup
                self._pending.add(target)
                owner = True

        try:
            info = await lookup
        finally:
            if owner:
                async with self._lock:
                    self._pending.discard(target)

        if info is None:
            return

        async with self._lock:
            if owner:
                self.discovered[target] = info
                result.new_servers.append(info)
                self.logger.info("New instance discovered: %s", target)
            result.federations.append(edge)

    async def inspect_instance(self, host: str, result: DiscoveryResult):
        """Fetches the federation list of a frontier host and inspects its targets.

        A failing host is skipped: it never aborts the discovery.
        """
        if self._deadline_passed():
            self.logger.info("Deadline reached, %s not crawled", host)
            return

        self.logger.debug("Start inspecting instance %s", host)
        federation = await fetch_federation(
            self.crawler, host, deadline=self._deadline_time
        )
        if isinstance(federation, FederationError):
            self.logger.info(
                "Instance %s skipped: %s (%s)",
                host,
                federation.code.value,
                federation.message,
            )
            return

        for edge in federation.edges:
            await self._inspect_target(edge, result)
        self.logger.debug("Finished inspecting instance %s", host)

    async def _crawl_round(self, frontier: List[str], result: DiscoveryResult, depth):
        desc = f"Discovering Misskey instances (round {depth})"
        if self.concurrency == 1:
            for host in tqdm(frontier, desc=desc, disable=not self.progress):
                if self._deadline_passed():
                    self.logger.info("Deadline reached, stopping the discovery")
                    break
                await self.inspect_instance(host, result)
            return

        worker_sem = asyncio.Semaphore(self.concurrency)

        async def bounded_inspection(host):
            async with worker_sem:
                await self.inspect_instance(host, result)

        await tqdm.gather(
            *[bounded_inspection(host) for host in frontier],
            desc=desc,
            disable=not self.progress,
        )

    async def discover(
        self, known_hosts: Optional[Iterable[str]] = None
    ) -> DiscoveryResult:
        """Discovers new instances from the federation lists of `known_hosts`.

        Args:
            known_hosts (Optional[Iterable[str]], optional): hosts already known by the
                caller. The seed servers are used when empty. Defaults to None.

        Returns:
            DiscoveryResult: the new instances (at most `max_new_servers`) and all
                the observed federation edges.
        """
        self._reset()
        known = list(dict.fromkeys(host.lower() for host in (known_hosts or [])))
        frontier = known if known else list(SEED_SERVERS)
        # Seed servers are never reported as new instances in later rounds
        self.known_hosts = set(frontier)
        if self.deadline is not None:
            self._deadline_time = asyncio.get_running_loop().time() + self.deadline

        result = DiscoveryResult()
        self.logger.info("Discovery begins from %d instances...", len(frontier))

        for depth in range(1, self.max_depth + 1):
            nb_before = len(result.new_servers)
            await self._crawl_round(frontier, result, depth)
            frontier = [server.host for server in result.new_servers[nb_before:]]
            if not frontier or self._deadline_passed():
                break

        self.logger.info(
            "Discovery completed: %d new instances, %d federation edges",
            len(result.new_servers),
            len(result.federations),
        )
        return result


async def discover(
    crawler: Crawler,
    known_hosts: Optional[Iterable[str]] = None,
    max_new_servers: int = DEFAULT_MAX_NEW_SERVERS,
    **kwargs,
) -> DiscoveryResult:
    return await DiscoveryCrawler(
        crawler, max_new_servers=max_new_servers, **kwargs
    ).discover(known_hosts)
