"""Data model of the federation graph."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AgeRestriction(str, Enum):
    ALL = "all"
    THIRTEEN_PLUS = "13+"
    EIGHTEEN_PLUS = "18+"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SoftwareIdentity:
    name: str
    version: str = ""


@dataclass
class Instance:
    """A Misskey instance that passed the identity classifier."""

    host: str
    name: Optional[str] = None
    description: Optional[str] = None
    icon_url: Optional[str] = None
    users_count: Optional[int] = None
    notes_count: Optional[int] = None

    software_name: Optional[str] = None
    software_version: Optional[str] = None
    repository_url: Optional[str] = None

    # Each flag is read independently: they may contradict each other.
    registration_open: bool = False
    email_required: bool = False
    approval_required: bool = False
    invite_only: bool = False

    age_restriction: AgeRestriction = AgeRestriction.UNKNOWN
    description_language: str = "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "name": self.name,
            "description": self.description,
            "usersCount": self.users_count,
            "notesCount": self.notes_count,
            "iconUrl": self.icon_url,
            "softwareName": self.software_name,
            "softwareVersion": self.software_version,
            "repositoryUrl": self.repository_url,
            "registrationOpen": self.registration_open,
            "emailRequired": self.email_required,
            "approvalRequired": self.approval_required,
            "inviteOnly": self.invite_only,
            "ageRestriction": self.age_restriction.value,
            "descriptionLanguage": self.description_language,
        }


@dataclass
class FederationEdge:
    """Relationship between two instances, as seen by `source_host`."""

    source_host: str
    target_host: str
    users_count: int = 0
    notes_count: int = 0
    is_blocked: bool = False
    is_suspended: bool = False

    @property
    def key(self):
        return (self.source_host, self.target_host)

    @property
    def weight(self) -> int:
        return -1 if self.is_blocked or self.is_suspended else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceHost": self.source_host,
            "targetHost": self.target_host,
            "usersCount": self.users_count,
            "notesCount": self.notes_count,
            "isBlocked": self.is_blocked,
            "isSuspended": self.is_suspended,
        }


@dataclass
class DiscoveryResult:
    new_servers: List[Instance] = field(default_factory=list)
    federations: List[FederationEdge] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "newServers": [server.to_dict() for server in self.new_servers],
            "federations": [edge.to_dict() for edge in self.federations],
        }
