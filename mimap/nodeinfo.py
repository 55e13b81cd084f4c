"""Software identification through NodeInfo."""

from typing import Optional

from .common import Crawler, CrawlerException
from .models import SoftwareIdentity

# Misskey and the forks that still report themselves as Misskey
SUPPORTED_SOFTWARE = ("misskey",)

NODEINFO_WELL_KNOWN = "/.well-known/nodeinfo"
NODEINFO_REL_MARKER = "nodeinfo"


def is_supported_software(name: Optional[str]) -> bool:
    return name is not None and name.lower() in SUPPORTED_SOFTWARE


def _find_nodeinfo_url(well_known) -> Optional[str]:
    if not isinstance(well_known, dict):
        return None
    links = well_known.get("links")
    if not isinstance(links, list):
        return None
    for link in links:
        if not isinstance(link, dict):
            continue
        rel = link.get("rel")
        href = link.get("href")
        if isinstance(rel, str) and NODEINFO_REL_MARKER in rel:
            return href if isinstance(href, str) and href else None
    return None


async def fetch_software_identity(
    crawler: Crawler, host: str
) -> Optional[SoftwareIdentity]:
    """Returns the software reported by the NodeInfo of an instance.

    Any failure (unreachable host, error code, missing link or software name)
    yields None. The request is never retried.
    """
    try:
        well_known = await crawler._fetch_json("https://" + host + NODEINFO_WELL_KNOWN)
        nodeinfo_url = _find_nodeinfo_url(well_known)
        if nodeinfo_url is None:
            crawler.logger.debug("Instance %s: no NodeInfo link", host)
            return None

        nodeinfo = await crawler._fetch_json(nodeinfo_url)
    except CrawlerException as err:
        crawler.logger.debug("Instance %s: NodeInfo unavailable (%s)", host, str(err))
        return None

    software = nodeinfo.get("software") if isinstance(nodeinfo, dict) else None
    if not isinstance(software, dict):
        return None
    name = software.get("name")
    if not isinstance(name, str) or not name:
        return None
    version = software.get("version")
    return SoftwareIdentity(
        name=name.lower(), version=version if isinstance(version, str) else ""
    )


async def classify(crawler: Crawler, host: str) -> Optional[SoftwareIdentity]:
    """Returns the software identity of `host` if it runs a supported software."""
    identity = await fetch_software_identity(crawler, host)
    if identity is None or not is_supported_software(identity.name):
        return None
    return identity
