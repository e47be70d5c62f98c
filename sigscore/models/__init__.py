"""SQLAlchemy models."""

from sigscore.models.account import Account
from sigscore.models.account_score import AccountScore
from sigscore.models.activity import Activity, Deal
from sigscore.models.alert_event import AlertEvent
from sigscore.models.alert_rule import AlertRule, AlertRuleState
from sigscore.models.contact import Contact
from sigscore.models.contact_identity import ContactIdentity
from sigscore.models.contact_merge_log import ContactMergeLog
from sigscore.models.job_run import JobRun
from sigscore.models.scoring_override import ScoringOverride
from sigscore.models.signal import Signal

__all__ = [
    "Account",
    "AccountScore",
    "Activity",
    "AlertEvent",
    "AlertRule",
    "AlertRuleState",
    "Contact",
    "ContactIdentity",
    "ContactMergeLog",
    "Deal",
    "JobRun",
    "ScoringOverride",
    "Signal",
]
