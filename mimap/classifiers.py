"""Heuristics over already fetched metadata. No network access here."""

import re

from typing import Optional

from .models import Instance

# Mastodon and other ActivityPub servers that are not worth probing
EXCLUDED_DOMAINS = [
    "mastodon.social",
    "mstdn.jp",
    "pawoo.net",
    "fedibird.com",
]

JAPANESE_CHARACTERS = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")
JAPANESE_KEYWORDS = re.compile(r"日本|japan|japanese|にほん|ニホン")

VANILLA_VERSION_PATTERN = re.compile(r"^\d{4}\.\d{1,2}\.\d+$")
FORK_INDICATORS = ["-", "+", "custom", "fork", "mod"]

VANILLA_REPOSITORY = "github.com/misskey-dev/misskey"
GITHUB_REPOSITORY_PATTERN = re.compile(r"github\.com/([^/]+/[^/]+)", re.IGNORECASE)


def is_japanese_server(instance: Instance) -> bool:
    text = f"{instance.name or ''} {instance.description or ''}".lower()
    return (
        JAPANESE_CHARACTERS.search(text) is not None
        or instance.host.endswith(".jp")
        or JAPANESE_KEYWORDS.search(text) is not None
    )


def is_excluded_domain(host: str) -> bool:
    return any(
        host == domain or host.endswith("." + domain) for domain in EXCLUDED_DOMAINS
    )


def is_vanilla_version(version: Optional[str]) -> bool:
    """Checks whether a version string is a release of upstream Misskey (e.g., 2025.1.0)."""
    if not version or not VANILLA_VERSION_PATTERN.match(version):
        return False
    lowered = version.lower()
    return not any(indicator in lowered for indicator in FORK_INDICATORS)


def is_vanilla_repository(repository_url: Optional[str]) -> bool:
    if not repository_url:
        return False
    return VANILLA_REPOSITORY in repository_url.lower()


def repository_display_name(repository_url: Optional[str]) -> str:
    # e.g., "https://github.com/misskey-dev/misskey" -> "misskey-dev/misskey"
    if not repository_url:
        return "unknown"
    match = GITHUB_REPOSITORY_PATTERN.search(repository_url)
    if match:
        return match.group(1)
    return re.sub(r"^https?://", "", repository_url)


def server_scale(users_count: Optional[int]) -> str:
    """Size categories of the Misskey setup wizard."""
    if users_count is None:
        return "small"
    if users_count >= 1000:
        return "large"
    if users_count > 100:
        return "medium"
    return "small"
