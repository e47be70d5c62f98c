"""Typed signal metadata.

Each known signal family gets a model with the fields connectors commonly
send; anything else lands in ``extra``. Identity extraction, scoring and
alert matching read these models rather than the stored dict.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from sigscore.models.enums import IdentityType, SignalSourceType
from sigscore.schemas.identity import IdentityHint
from sigscore.taxonomy.loader import metadata_family_for

logger = logging.getLogger(__name__)


class SignalMetadata(BaseModel):
    """Base for typed metadata. Unmodeled keys are kept and exposed via ``extra``."""

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    family: ClassVar[str] = "generic"

    @property
    def extra(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        """Identifiers this metadata reveals about the actor."""
        return []


def _hint(type_: IdentityType, value: Any, verified: bool = False) -> list[IdentityHint]:
    if not isinstance(value, str) or not value.strip():
        return []
    return [IdentityHint(type=type_, value=value, verified=verified)]


class RepositoryMetadata(SignalMetadata):
    family: ClassVar[str] = "repository"

    repo: str | None = None
    action: str | None = None
    ref: str | None = None
    sender_login: str | None = None
    sender_email: str | None = None
    sender_avatar: str | None = None

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        from_github = source_type == SignalSourceType.GITHUB.value
        return _hint(IdentityType.GITHUB, self.sender_login, from_github) + _hint(
            IdentityType.EMAIL, self.sender_email
        )


class PackageMetadata(SignalMetadata):
    family: ClassVar[str] = "package"

    package: str | None = None
    version: str | None = None
    maintainer: str | None = None
    maintainer_email: str | None = None
    downloads: int | None = None

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        hints = _hint(IdentityType.EMAIL, self.maintainer_email)
        if source_type == SignalSourceType.NPM.value:
            hints += _hint(IdentityType.NPM, self.maintainer, True)
        return hints


class WebMetadata(SignalMetadata):
    family: ClassVar[str] = "web"

    url: str | None = None
    path: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    email: str | None = None
    ip: str | None = None
    company_domain: str | None = None

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        return (
            _hint(IdentityType.EMAIL, self.email)
            + _hint(IdentityType.IP, self.ip)
            + _hint(IdentityType.DOMAIN, self.company_domain)
        )


class ProductMetadata(SignalMetadata):
    family: ClassVar[str] = "product"

    user_id: str | None = None
    user_email: str | None = None
    feature: str | None = None
    plan: str | None = None
    event_count: int | None = None
    ip: str | None = None

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        # Product emails come from authenticated sessions
        return _hint(IdentityType.EMAIL, self.user_email, True) + _hint(IdentityType.IP, self.ip)


class CommunityMetadata(SignalMetadata):
    family: ClassVar[str] = "community"

    channel: str | None = None
    url: str | None = None
    author: str | None = None
    author_email: str | None = None

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        hints = _hint(IdentityType.EMAIL, self.author_email)
        if source_type == SignalSourceType.TWITTER.value:
            hints += _hint(IdentityType.TWITTER, self.author, True)
        elif source_type == SignalSourceType.LINKEDIN.value:
            hints += _hint(IdentityType.LINKEDIN, self.author, True)
        return hints


class GenericMetadata(SignalMetadata):
    """Fallback container: every key is kept in ``extra``."""

    def identity_hints(self, source_type: str) -> list[IdentityHint]:
        extra = self.extra
        return (
            _hint(IdentityType.EMAIL, extra.get("email"))
            + _hint(IdentityType.GITHUB, extra.get("github"))
            + _hint(IdentityType.IP, extra.get("ip"))
            + _hint(IdentityType.DOMAIN, extra.get("domain"))
        )


METADATA_MODELS: dict[str, type[SignalMetadata]] = {
    "repository": RepositoryMetadata,
    "package": PackageMetadata,
    "web": WebMetadata,
    "product": ProductMetadata,
    "community": CommunityMetadata,
    "generic": GenericMetadata,
}


def parse_signal_metadata(
    signal_type: str, source_type: str, raw: dict[str, Any] | None
) -> SignalMetadata:
    """Return the typed metadata model for a signal.

    Metadata that does not fit its family's field types is kept whole as
    GenericMetadata instead of rejecting the signal.
    """
    data = dict(raw or {})
    model = METADATA_MODELS[metadata_family_for(signal_type, source_type)]
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        logger.debug(
            "Metadata for %s/%s does not fit %s, keeping as generic: %s",
            source_type,
            signal_type,
            model.family,
            exc.errors(include_url=False),
        )
        return GenericMetadata.model_validate(data)
