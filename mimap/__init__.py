from .common import Crawler, CrawlerException, ConnectionFailure
from .credentials import AppCredentialCache
from .discovery import DiscoveryCrawler, discover
from .federation import FederationError, FederationErrorCode, FederationList, fetch_federation
from .instance_meta import fetch_metadata, fetch_server_info
from .models import AgeRestriction, DiscoveryResult, FederationEdge, Instance
from .nodeinfo import classify
from .storage import CsvGraphSink, GraphSink, MemoryGraphSink

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mimap")
except PackageNotFoundError:  # Not installed
    __version__ = "unknown"
__license__ = "GPLv3"
