"""Application credentials registered on remote instances."""

from typing import Dict, Optional


class AppCredentialCache:
    """In-memory host -> application secret cache.

    Entries live as long as the cache object. An entry is removed explicitly
    with `invalidate`, which the federation fetcher does when an instance
    answers PERMISSION_DENIED, so that the next login registers a new
    application.
    """

    def __init__(self):
        self._secrets: Dict[str, str] = {}

    def get(self, host: str) -> Optional[str]:
        return self._secrets.get(host.lower())

    def set(self, host: str, secret: str):
        self._secrets[host.lower()] = secret

    def invalidate(self, host: str) -> bool:
        return self._secrets.pop(host.lower(), None) is not None

    def __contains__(self, host) -> bool:
        return isinstance(host, str) and host.lower() in self._secrets

    def __len__(self) -> int:
        return len(self._secrets)
