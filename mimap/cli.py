import asyncio
import json
import os
import sys

from argparse import ArgumentParser

import aiohttp

from .api import federation_endpoint
from .common import (
    Crawler,
    CrawlerException,
    fetch_fediverse_instance_list,
    setup_logger,
)
from .discovery import DEFAULT_MAX_NEW_SERVERS, SEED_SERVERS, DiscoveryCrawler
from .instance_meta import fetch_server_info
from .storage import CsvGraphSink


async def launch_discovery(args) -> int:
    sink = CsvGraphSink(args.output)
    logger = setup_logger(
        "mimap", log_file=os.path.join(sink.result_dir, "crawl_misskey_discovery.log")
    )

    hosts = [host.lower() for host in args.hosts]
    if args.observer:
        try:
            hosts += await fetch_fediverse_instance_list("misskey")
        except (CrawlerException, aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.error("Fediverse Observer unavailable: %s", err)

    async with Crawler(request_timeout=args.timeout, logger=logger) as crawler:
        for host in dict.fromkeys(hosts or SEED_SERVERS):
            info = await fetch_server_info(crawler, host)
            if info is not None:
                sink.upsert_instance(info)

        discovery_crawler = DiscoveryCrawler(
            crawler,
            max_new_servers=args.max_new,
            concurrency=args.concurrency,
            deadline=args.deadline,
            max_depth=args.depth,
            progress=not args.quiet,
        )
        result = await discovery_crawler.discover(hosts)

    for server in result.new_servers:
        sink.upsert_instance(server)
    for edge in result.federations:
        sink.upsert_federation(edge)
    sink.flush()

    logger.info("Graph written in %s", sink.result_dir)
    print(
        f"{len(result.new_servers)} new instances, "
        f"{len(result.federations)} federation edges ({sink.result_dir})"
    )
    return 0


async def launch_federation(args) -> int:
    setup_logger("mimap")
    async with Crawler(request_timeout=args.timeout) as crawler:
        status, payload = await federation_endpoint(crawler, args.host, token=args.token)
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0 if status == 200 else 1


async def launch_classify(args) -> int:
    setup_logger("mimap")
    async with Crawler(request_timeout=args.timeout) as crawler:
        info = await fetch_server_info(crawler, args.host.lower())
    if info is None:
        print(f"{args.host} does not run a supported software (or is unreachable)")
        return 1
    print(json.dumps(info.to_dict(), ensure_ascii=False, indent=2))
    return 0


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        description="mimap maps the Misskey federation to provide graphs of instances."
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=Crawler.REQUEST_TIMEOUT,
        help="Timeout of every HTTP request (seconds)",
    )
    subparsers = parser.add_subparsers(dest="subcommand")
    subparsers.required = True

    discover_parser = subparsers.add_parser(
        "discover", help="Discover new instances from known instances"
    )
    discover_parser.add_argument(
        "hosts", nargs="*", help="Known instances (default: the seed servers)"
    )
    discover_parser.add_argument(
        "--max-new", type=int, default=DEFAULT_MAX_NEW_SERVERS
    )
    discover_parser.add_argument("--depth", type=int, default=1)
    discover_parser.add_argument("--concurrency", type=int, default=1)
    discover_parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Maximal duration of the discovery (seconds)",
    )
    discover_parser.add_argument(
        "--observer",
        action="store_true",
        help="Add the Misskey instances listed by the Fediverse Observer",
    )
    discover_parser.add_argument("--output", default=None, help="Result directory")
    discover_parser.add_argument("--quiet", action="store_true")

    federation_parser = subparsers.add_parser(
        "federation", help="Federation list of a single instance"
    )
    federation_parser.add_argument("host")
    federation_parser.add_argument(
        "--token",
        default=os.environ.get("MIMAP_TOKEN"),
        help="Access token issued by this instance (default: $MIMAP_TOKEN)",
    )

    classify_parser = subparsers.add_parser(
        "classify", help="Software and metadata of a single instance"
    )
    classify_parser.add_argument("host")
    return parser


SUBCOMMAND_LAUNCH = {
    "discover": launch_discovery,
    "federation": launch_federation,
    "classify": launch_classify,
}


def main(argv=None):
    args = build_parser().parse_args(argv)
    sys.exit(asyncio.run(SUBCOMMAND_LAUNCH[args.subcommand](args)))
