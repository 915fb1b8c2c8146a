"""Calls to the public Habbo Hotel site: user lookup, avatars and image proxying."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit

import requests

logger = logging.getLogger(__name__)

HABBO_BASE_URL = "https://www.habbo.es"
HABBO_API_TIMEOUT_SECONDS = 10
USER_AGENT = "UMBRAX-CLAN-Platform/1.0"

# only these hosts may be fetched through the image proxy
IMAGE_REMOTE_HOSTS = ("www.habbo.es", "www.habbo.com")
IMAGE_PATH_PREFIX = "/habbo-imaging/"


class ImageProxyError(Exception):
    pass


@dataclass
class HabboValidation:
    is_valid: bool
    exact_name: str | None = None
    avatar_url: str | None = None
    error: str | None = None


def avatar_url(habbo_name: str, size: str = "l", direction: int = 3, action: str = "wav") -> str:
    return (
        f"{HABBO_BASE_URL}/habbo-imaging/avatarimage?user={quote(habbo_name, safe='')}"
        f"&head_direction={direction}&size={size}&action={action}"
    )


def validate_habbo_user(habbo_name: str) -> HabboValidation:
    """Check that ``habbo_name`` exists on Habbo and fetch its exact capitalisation."""
    try:
        resp = requests.get(
            f"{HABBO_BASE_URL}/api/public/users",
            params={"name": habbo_name},
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            timeout=HABBO_API_TIMEOUT_SECONDS,
        )
    except requests.Timeout:
        logger.warning("habbo lookup timed out for %r", habbo_name)
        return HabboValidation(False, error="Habbo Hotel took too long to answer, try again")
    except requests.RequestException as exc:
        logger.warning("habbo lookup failed for %r: %s", habbo_name, exc)
        return HabboValidation(False, error="could not reach Habbo Hotel")

    if resp.status_code == 404:
        return HabboValidation(False, error="user not found on Habbo Hotel")
    if not resp.ok:
        logger.warning("habbo lookup for %r returned %s", habbo_name, resp.status_code)
        return HabboValidation(False, error="could not verify the user on Habbo Hotel")

    try:
        data = resp.json()
    except ValueError:
        return HabboValidation(False, error="could not verify the user on Habbo Hotel")

    if not data.get("profileVisible"):
        return HabboValidation(False, error="this Habbo profile is not public")

    name = data["name"]
    return HabboValidation(
        True,
        exact_name=name,
        avatar_url=avatar_url(name),
    )


def is_allowed_image_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return False
    if parts.scheme != "https" or port is not None:
        return False
    if (parts.hostname or "") not in IMAGE_REMOTE_HOSTS:
        return False

    # requests collapses dot segments before sending, so the path must
    # already be in normal form to stay under the prefix
    path = unquote(parts.path)
    if "\\" in path or "%2e" in path.lower():
        return False
    if any(seg in (".", "..") for seg in path.split("/")):
        return False
    normalized = posixpath.normpath(path)
    if path.endswith("/"):
        normalized += "/"
    if normalized != path:
        return False
    return normalized.startswith(IMAGE_PATH_PREFIX)


def fetch_image(url: str) -> tuple[bytes, str]:
    """Download an allowed habbo-imaging URL; returns (body, content type).

    Redirects are not followed and anything that is not an image is refused.
    """
    if not is_allowed_image_url(url):
        raise ImageProxyError(f"image host not allowed: {url}")
    resp = requests.get(
        url,
        headers={"User-Agent": USER_AGENT},
        timeout=HABBO_API_TIMEOUT_SECONDS,
        allow_redirects=False,
    )
    if 300 <= resp.status_code < 400:
        raise ImageProxyError(f"upstream redirected ({resp.status_code})")
    resp.raise_for_status()
    content_type = resp.headers.get("Content-Type", "")
    if not content_type.split(";", 1)[0].strip().lower().startswith("image/"):
        raise ImageProxyError(f"upstream sent {content_type or 'no content type'}")
    return resp.content, content_type
