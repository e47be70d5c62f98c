"""String enums persisted as plain text columns."""

from enum import Enum


class SignalSourceType(str, Enum):
    """Connector a signal came from."""

    GITHUB = "GITHUB"
    NPM = "NPM"
    PYPI = "PYPI"
    WEBSITE = "WEBSITE"
    DOCS = "DOCS"
    PRODUCT_API = "PRODUCT_API"
    SEGMENT = "SEGMENT"
    DISCORD = "DISCORD"
    TWITTER = "TWITTER"
    STACKOVERFLOW = "STACKOVERFLOW"
    REDDIT = "REDDIT"
    POSTHOG = "POSTHOG"
    LINKEDIN = "LINKEDIN"
    INTERCOM = "INTERCOM"
    ZENDESK = "ZENDESK"
    CUSTOM_WEBHOOK = "CUSTOM_WEBHOOK"


class IdentityType(str, Enum):
    """Kind of identifier attached to a contact."""

    EMAIL = "EMAIL"
    GITHUB = "GITHUB"
    NPM = "NPM"
    TWITTER = "TWITTER"
    LINKEDIN = "LINKEDIN"
    IP = "IP"
    DOMAIN = "DOMAIN"


# Identifiers that name a single person; IP and DOMAIN only co-occur.
PERSON_IDENTITY_TYPES = frozenset(
    {
        IdentityType.EMAIL,
        IdentityType.GITHUB,
        IdentityType.NPM,
        IdentityType.TWITTER,
        IdentityType.LINKEDIN,
    }
)


class ScoreTier(str, Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    INACTIVE = "INACTIVE"


class ScoreTrend(str, Enum):
    RISING = "RISING"
    STABLE = "STABLE"
    FALLING = "FALLING"


class AlertTriggerType(str, Enum):
    SCORE_DROP = "score_drop"
    SCORE_RISE = "score_rise"
    SCORE_THRESHOLD = "score_threshold"
    ENGAGEMENT_DROP = "engagement_drop"
    ACCOUNT_INACTIVE = "account_inactive"
    NEW_HOT_SIGNAL = "new_hot_signal"


# Triggers evaluated against account state with edge detection.
STATEFUL_TRIGGERS = frozenset(
    {
        AlertTriggerType.SCORE_DROP,
        AlertTriggerType.SCORE_RISE,
        AlertTriggerType.SCORE_THRESHOLD,
        AlertTriggerType.ENGAGEMENT_DROP,
        AlertTriggerType.ACCOUNT_INACTIVE,
    }
)

# Time-based triggers the scheduled inactivity check evaluates.
INACTIVITY_TRIGGERS = frozenset(
    {AlertTriggerType.ENGAGEMENT_DROP, AlertTriggerType.ACCOUNT_INACTIVE}
)
