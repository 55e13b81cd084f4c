"""Misskey instance metadata (/api/meta)."""

import re

from typing import Any, Dict, Optional

from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException

from .common import Crawler, ConnectionFailure
from .models import AgeRestriction, Instance, SoftwareIdentity
from .nodeinfo import classify

LANGUAGE_DETECTION_THRESHOLD = 0.7

# langdetect is randomized by default
DetectorFactory.seed = 0

ADULT_KEYWORDS = re.compile(r"18\+|nsfw|r-?18|adult|成人|アダルト")
TEEN_KEYWORDS = re.compile(r"13歳|13才|13\+|中学生以上")


def _get_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _get_int(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    # bool is a subclass of int
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def _get_bool(data: Dict[str, Any], key: str) -> Optional[bool]:
    value = data.get(key)
    return value if isinstance(value, bool) else None


def _get_dict(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _name_and_description(meta: Dict[str, Any]) -> str:
    name = _get_str(meta, "name") or ""
    description = _get_str(meta, "description") or ""
    return f"{name} {description}".lower()


def derive_age_restriction(meta: Dict[str, Any]) -> AgeRestriction:
    """Guesses the age policy of an instance, first matching rule wins.

    NB: "requireSetup implies 13+" is an unverified heuristic.
    """
    text = _name_and_description(meta)
    if ADULT_KEYWORDS.search(text):
        return AgeRestriction.EIGHTEEN_PLUS
    if TEEN_KEYWORDS.search(text):
        return AgeRestriction.THIRTEEN_PLUS
    if "requireSetup" in _get_dict(meta, "policies"):
        return AgeRestriction.THIRTEEN_PLUS
    if _get_bool(meta, "emailRequiredForSignup") is True:
        return AgeRestriction.THIRTEEN_PLUS
    return AgeRestriction.UNKNOWN


def absolute_icon_url(host: str, icon_url: Optional[str]) -> Optional[str]:
    # An empty iconUrl is kept as is, only a relative path is rewritten
    if not icon_url or icon_url.startswith("http"):
        return icon_url
    return "https://" + host + ("" if icon_url.startswith("/") else "/") + icon_url


def detect_language(text: str) -> str:
    try:
        detected_languages = detect_langs(text)
    except LangDetectException:
        return "Unknown"
    if detected_languages and detected_languages[0].prob > LANGUAGE_DETECTION_THRESHOLD:
        return detected_languages[0].lang
    return "Unknown"


def build_instance(
    host: str, meta: Dict[str, Any], identity: SoftwareIdentity
) -> Instance:
    policies = _get_dict(meta, "policies")
    name = _get_str(meta, "name")
    description = _get_str(meta, "description")

    return Instance(
        host=host,
        name=name,
        description=description,
        icon_url=absolute_icon_url(host, _get_str(meta, "iconUrl")),
        users_count=_get_int(meta, "originalUsersCount"),
        notes_count=_get_int(meta, "originalNotesCount"),
        software_name=identity.name,
        software_version=identity.version,
        repository_url=_get_str(meta, "repositoryUrl"),
        registration_open=_get_bool(meta, "disableRegistration") is not True,
        email_required=_get_bool(meta, "emailRequiredForSignup") is True,
        approval_required=_get_bool(meta, "approvalRequiredForSignup") is True,
        invite_only=(
            _get_bool(policies, "canInvite") is False
            or _get_bool(meta, "enableRecaptcha") is False
        ),
        age_restriction=derive_age_restriction(meta),
        description_language=detect_language(description or name or ""),
    )


async def fetch_metadata(
    crawler: Crawler, host: str, identity: SoftwareIdentity
) -> Optional[Instance]:
    """Fetches /api/meta and builds the Instance record.

    Fails closed: any error returns None, never a partial Instance.
    """
    try:
        status, meta = await crawler._request_json(
            "https://" + host + "/api/meta", body={}, op="POST"
        )
    except ConnectionFailure as err:
        crawler.logger.debug("Instance %s: metadata unavailable (%s)", host, str(err))
        return None

    if status != 200 or not isinstance(meta, dict):
        crawler.logger.debug(
            "Instance %s: invalid metadata response (code %d)", host, status
        )
        return None

    return build_instance(host, meta, identity)


async def fetch_server_info(crawler: Crawler, host: str) -> Optional[Instance]:
    """Classifies `host` and, for supported software, fetches its metadata."""
    identity = await classify(crawler, host)
    if identity is None:
        return None
    return await fetch_metadata(crawler, host, identity)
