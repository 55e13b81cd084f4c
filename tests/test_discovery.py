import asyncio

import pytest

from mimap.discovery import DiscoveryCrawler, discover

JAPANESE_META = {"name": "ミスキー", "description": "日本のサーバーです"}


def _targets(result):
    return [edge.target_host for edge in result.federations]


def _new_hosts(result):
    return [server.host for server in result.new_servers]


def _run(crawler, known_hosts, max_new_servers=50, **kwargs):
    return asyncio.run(
        discover(crawler, known_hosts, max_new_servers, progress=False, **kwargs)
    )


def test_scenario_excluded_and_japanese(crawler, row):
    crawler.add_federation("misskey.io", [row("pawoo.net"), row("mi.example.jp")])
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, ["misskey.io"], 50)

    assert _new_hosts(result) == ["mi.example.jp"]
    assert _targets(result) == ["mi.example.jp"]
    assert result.federations[0].source_host == "misskey.io"
    # The excluded domain is never contacted
    assert not crawler.requests_to("https://pawoo.net/.well-known/nodeinfo")


def test_cap_limits_instances_but_not_edges(crawler, row):
    hosts = [f"mi{i}.example.jp" for i in range(6)]
    crawler.add_federation("misskey.io", [row(host) for host in hosts])
    for host in hosts:
        crawler.add_instance(host, meta=JAPANESE_META)

    result = _run(crawler, ["misskey.io"], 2)

    assert _new_hosts(result) == hosts[:2]
    assert _targets(result) == hosts
    # Hosts beyond the cap are not contacted
    assert not crawler.requests_to(f"https://{hosts[2]}/.well-known/nodeinfo")


def test_excluded_subdomains_never_appear(crawler, row):
    crawler.add_federation(
        "misskey.io",
        [row("media.mastodon.social"), row("fedibird.com"), row("mi.example.jp")],
    )
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, ["misskey.io"])

    assert "media.mastodon.social" not in _targets(result)
    assert "fedibird.com" not in _targets(result)
    assert "fedibird.com" not in _new_hosts(result)


def test_known_hosts_keep_their_edges(crawler, row):
    crawler.add_federation("misskey.io", [row("known.example"), row("unknown.example")])
    crawler.add_federation("known.example", [row("misskey.io")])

    result = _run(crawler, ["misskey.io", "known.example"])

    assert result.new_servers == []
    assert [(edge.source_host, edge.target_host) for edge in result.federations] == [
        ("misskey.io", "known.example"),
        ("known.example", "misskey.io"),
    ]
    assert not crawler.requests_to("https://known.example/.well-known/nodeinfo")


def test_unsupported_and_foreign_instances_are_skipped(crawler, row):
    crawler.add_federation(
        "misskey.io",
        [
            row("mastodon.example.jp"),
            row("down.example.jp"),
            row("misskey.example.fr"),
            row("mi.example.jp"),
        ],
    )
    crawler.add_instance("mastodon.example.jp", software="mastodon")
    crawler.add_instance("misskey.example.fr", meta={"name": "Misskey FR"})
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, ["misskey.io"])

    assert _new_hosts(result) == ["mi.example.jp"]
    assert _targets(result) == ["mi.example.jp"]


def test_failing_frontier_host_does_not_abort(crawler, row):
    crawler.routes[("POST", "https://private.example/api/federation/instances")] = (
        401,
        {"error": {"code": "CREDENTIAL_REQUIRED"}},
    )
    crawler.add_federation("misskey.io", [row("mi.example.jp")])
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, ["down.example", "private.example", "misskey.io"])

    assert _new_hosts(result) == ["mi.example.jp"]
    assert all(edge.source_host == "misskey.io" for edge in result.federations)


def test_discovered_hosts_are_counted_once(crawler, row):
    crawler.add_federation("a.example", [row("mi.example.jp")])
    crawler.add_federation("b.example", [row("mi.example.jp"), row("down.example.jp")])
    crawler.add_federation("c.example", [row("down.example.jp")])
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, ["a.example", "b.example", "c.example"])

    assert _new_hosts(result) == ["mi.example.jp"]
    assert [(edge.source_host, edge.target_host) for edge in result.federations] == [
        ("a.example", "mi.example.jp"),
        ("b.example", "mi.example.jp"),
    ]
    # Lookups are not repeated within one discovery
    assert len(crawler.requests_to("https://mi.example.jp/.well-known/nodeinfo")) == 1
    assert len(crawler.requests_to("https://down.example.jp/.well-known/nodeinfo")) == 1


def test_seed_servers_by_default(crawler, row):
    crawler.add_federation("misskey.io", [row("mi.example.jp")])
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, [])

    assert _new_hosts(result) == ["mi.example.jp"]
    assert crawler.requests[0][1] == "https://misskey.io/api/federation/instances"


def test_rediscovery_is_idempotent(crawler, row):
    hosts = [f"mi{i}.example.jp" for i in range(5)]
    crawler.add_federation("misskey.io", [row(host) for host in hosts])
    for host in hosts:
        crawler.add_instance(host, meta=JAPANESE_META)

    first = _run(crawler, ["misskey.io"], 3)
    second = _run(crawler, ["misskey.io"], 3)

    assert _new_hosts(first) == _new_hosts(second)
    assert first.to_dict() == second.to_dict()


def test_concurrent_discovery_respects_cap(crawler, row):
    frontier = [f"seed{i}.example" for i in range(4)]
    hosts = [f"mi{i}.example.jp" for i in range(12)]
    for index, seed in enumerate(frontier):
        crawler.add_federation(seed, [row(host) for host in hosts[index * 3 :]])
    for host in hosts:
        crawler.add_instance(host, meta=JAPANESE_META)

    result = _run(crawler, frontier, 5, concurrency=4)

    assert len(result.new_servers) == 5
    assert len(set(_new_hosts(result))) == 5
    assert len(result.federations) == sum(len(hosts[i * 3 :]) for i in range(4))


def test_depth_crawls_discovered_instances(crawler, row):
    crawler.add_federation("misskey.io", [row("mi.example.jp")])
    crawler.add_federation("mi.example.jp", [row("misskey.io"), row("deep.example.jp")])
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)
    crawler.add_instance("deep.example.jp", meta=JAPANESE_META)

    shallow = _run(crawler, ["misskey.io"])
    deep = _run(crawler, ["misskey.io"], max_depth=2)

    assert _new_hosts(shallow) == ["mi.example.jp"]
    assert _new_hosts(deep) == ["mi.example.jp", "deep.example.jp"]
    assert ("mi.example.jp", "misskey.io") in [
        (edge.source_host, edge.target_host) for edge in deep.federations
    ]


def test_seed_servers_are_not_rediscovered(crawler, row):
    crawler.add_federation("misskey.io", [row("mi.example.jp")])
    crawler.add_federation("mi.example.jp", [row("misskey.io")])
    crawler.add_instance("misskey.io", meta=JAPANESE_META)
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, [], 50, max_depth=2)

    assert _new_hosts(result) == ["mi.example.jp"]
    assert [(edge.source_host, edge.target_host) for edge in result.federations] == [
        ("misskey.io", "mi.example.jp"),
        ("mi.example.jp", "misskey.io"),
    ]
    assert not crawler.requests_to("https://misskey.io/.well-known/nodeinfo")


def test_seed_server_does_not_use_a_slot(crawler, row):
    crawler.add_federation("misskey.io", [row("mi.example.jp")])
    crawler.add_federation("mi.example.jp", [row("misskey.io"), row("deep.example.jp")])
    crawler.add_instance("misskey.io", meta=JAPANESE_META)
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)
    crawler.add_instance("deep.example.jp", meta=JAPANESE_META)

    result = _run(crawler, [], 2, max_depth=2)

    assert _new_hosts(result) == ["mi.example.jp", "deep.example.jp"]


def test_expired_deadline_starts_nothing(crawler, row):
    crawler.add_federation("misskey.io", [row("mi.example.jp")])
    crawler.add_instance("mi.example.jp", meta=JAPANESE_META)

    result = _run(crawler, ["misskey.io"], deadline=0)

    assert result.new_servers == []
    assert result.federations == []
    assert crawler.requests == []


def test_invalid_parameters(crawler):
    with pytest.raises(ValueError):
        DiscoveryCrawler(crawler, max_new_servers=-1)
    with pytest.raises(ValueError):
        DiscoveryCrawler(crawler, concurrency=0)
    with pytest.raises(ValueError):
        DiscoveryCrawler(crawler, max_depth=0)
