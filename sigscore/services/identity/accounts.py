"""Account resolution by company domain."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from sigscore.models.account import Account
from sigscore.services.identity.normalize import extract_domain, is_free_email_domain

logger = logging.getLogger(__name__)


def name_from_domain(domain: str) -> str:
    """'acme-labs.io' -> 'Acme Labs'."""
    label = domain.split(".")[0]
    return " ".join(part.capitalize() for part in label.replace("_", "-").split("-") if part)


def find_account_by_domain(db: Session, organization_id: str, domain: str) -> Account | None:
    return db.scalar(
        select(Account).where(Account.organization_id == organization_id, Account.domain == domain)
    )


def resolve_or_create_account(
    db: Session, organization_id: str, domain: str | None
) -> tuple[Account | None, bool]:
    """Resolve a company domain to an account, creating one when missing.

    Free-mail domains never resolve. Returns (account, created). Flushes only.
    """
    domain = extract_domain(domain) if domain else None
    if domain is None or is_free_email_domain(domain):
        return None, False

    existing = find_account_by_domain(db, organization_id, domain)
    if existing is not None:
        return existing, False

    account = Account(
        organization_id=organization_id,
        name=name_from_domain(domain) or domain,
        domain=domain,
    )
    db.add(account)
    db.flush()
    logger.info("Created account: org=%s domain=%s id=%s", organization_id, domain, account.id)
    return account, True
