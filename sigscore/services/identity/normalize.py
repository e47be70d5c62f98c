"""Identity value normalization and confidence assignment."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from sigscore.models.enums import IdentityType
from sigscore.taxonomy.loader import get_free_email_providers, get_identity_section

_HANDLE_HOSTS = {
    IdentityType.GITHUB: "github.com",
    IdentityType.NPM: "npmjs.com",
    IdentityType.TWITTER: "twitter.com",
}
_LINKEDIN_PATH = re.compile(r"/(in|company)/([^/?#]+)")


def extract_domain(url: str) -> str | None:
    """Extract domain from a URL or bare host, strip www, return lowercase.

    Returns None if the value has no usable host.
    """
    if not url or not url.strip():
        return None
    raw = url.strip().lower()
    if "://" not in raw:
        raw = f"http://{raw}"
    try:
        parsed = urlparse(raw)
    except ValueError:
        return None
    host = parsed.hostname or ""
    if host.startswith("www."):
        host = host[4:]
    host = host.strip(".")
    return host if host and "." in host else None


def email_domain(email: str) -> str | None:
    if not email or "@" not in email:
        return None
    return extract_domain(email.rsplit("@", 1)[1])


def is_free_email_domain(domain: str | None) -> bool:
    return bool(domain) and domain in get_free_email_providers()


def company_domain_from_email(email: str | None) -> str | None:
    """Domain that identifies the employer, or None for free-mail providers."""
    domain = email_domain(email or "")
    if domain is None or is_free_email_domain(domain):
        return None
    return domain


def _normalize_handle(value: str, host: str | None) -> str:
    handle = value.strip()
    if host and host in handle.lower():
        path = urlparse(handle if "://" in handle else f"https://{handle}").path
        segments = [s for s in path.split("/") if s]
        # npm profile URLs look like /~user
        handle = segments[-1] if segments else ""
    return handle.lstrip("@~").strip().lower()


def normalize_identity(type_: IdentityType | str, value: str | None) -> str | None:
    """Canonical form of an identifier, or None when it is not usable.

    Emails and handles are lowercased, handles lose a leading ``@``, URLs
    reduce to their handle, domains lose scheme, path and ``www.``.
    """
    if value is None:
        return None
    type_ = IdentityType(type_)
    raw = str(value).strip()
    if not raw:
        return None

    if type_ == IdentityType.EMAIL:
        email = raw.lower()
        if email.startswith("mailto:"):
            email = email[len("mailto:") :]
        local, _, domain = email.partition("@")
        if not local or not domain or "." not in domain:
            return None
        return email
    if type_ == IdentityType.LINKEDIN:
        match = _LINKEDIN_PATH.search(raw.lower())
        slug = match.group(2) if match else raw.lower().rstrip("/")
        return slug.lstrip("@").strip() or None
    if type_ == IdentityType.DOMAIN:
        return extract_domain(raw)
    if type_ == IdentityType.IP:
        return raw.lower()
    return _normalize_handle(raw, _HANDLE_HOSTS.get(type_)) or None


def confidence_for(type_: IdentityType | str, verified: bool) -> float:
    """Match confidence for an identity from the configured ladder.

    verified email > verified handle > unverified exact > domain > ip.
    """
    ladder = get_identity_section()["confidence"]
    type_ = IdentityType(type_)
    if type_ == IdentityType.IP:
        return float(ladder["ip"])
    if type_ == IdentityType.DOMAIN:
        return float(ladder["domain"])
    if not verified:
        return float(ladder["unverified_exact"])
    if type_ == IdentityType.EMAIL:
        return float(ladder["verified_email"])
    return float(ladder["verified_handle"])
