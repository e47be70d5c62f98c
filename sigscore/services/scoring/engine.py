"""Score persistence: compute, append snapshot with compare-and-swap, read back."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from sigscore import events
from sigscore.config import get_settings
from sigscore.errors import ComputationError, ConflictError, NotFoundError
from sigscore.locks import account_locks
from sigscore.models.account import Account
from sigscore.models.account_score import AccountScore
from sigscore.models.signal import Signal
from sigscore.schemas.score import TopAccountItem
from sigscore.services.alerts.evaluator import evaluate_account
from sigscore.services.identity.resolver import get_account_or_404
from sigscore.services.scoring.factors import SignalPoint, score_signals, trend_for
from sigscore.services.scoring.org_config import effective_scoring_config
from sigscore.timeutil import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def latest_snapshot(db: Session, account_id: int) -> AccountScore | None:
    return db.scalar(
        select(AccountScore)
        .where(AccountScore.account_id == account_id)
        .order_by(AccountScore.version.desc())
        .limit(1)
    )


def load_signal_points(
    db: Session, account_id: int, as_of: datetime, window_days: int
) -> list[SignalPoint]:
    """In-window signals for the account, oldest first."""
    since = as_of - timedelta(days=window_days)
    rows = db.scalars(
        select(Signal)
        .where(
            Signal.account_id == account_id,
            Signal.timestamp > since,
            Signal.timestamp <= as_of,
        )
        .order_by(Signal.timestamp.asc(), Signal.id.asc())
    ).all()
    return [SignalPoint(type=s.type, timestamp=s.timestamp, actor=s.actor_identifier) for s in rows]


def compute_account_score(
    db: Session,
    organization_id: str,
    account_id: int,
    as_of: datetime | None = None,
    evaluate_alerts: bool = True,
) -> AccountScore:
    """Compute and append a new score snapshot for the account.

    The snapshot's version is the prior version + 1; a concurrent writer
    that appended first makes the insert conflict, and the computation is
    retried from the fresh prior up to SCORE_CAS_MAX_ATTEMPTS times.

    Raises:
        NotFoundError: unknown account.
        ComputationError: inputs unavailable or a factor failed. The prior
            snapshot stays current.
        ConflictError: compare-and-swap retries exhausted.
    """
    account = get_account_or_404(db, organization_id, account_id)
    settings = get_settings()
    as_of = to_naive_utc(as_of) if as_of else utcnow()
    window_days = settings.score_window_days
    config = effective_scoring_config(db, organization_id)
    max_attempts = max(1, settings.score_cas_max_attempts)

    snapshot: AccountScore | None = None
    prior: AccountScore | None = None
    with account_locks.hold(f"{organization_id}:{account_id}"):
        for attempt in range(1, max_attempts + 1):
            prior = latest_snapshot(db, account_id)
            try:
                points = load_signal_points(db, account_id, as_of, window_days)
                result = score_signals(points, as_of, account.employee_count, window_days, config)
            except SQLAlchemyError as exc:
                db.rollback()
                raise ComputationError(
                    f"Signal data unavailable for account {account_id}: {exc}"
                ) from exc
            except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
                raise ComputationError(
                    f"Score computation failed for account {account_id}: {exc}"
                ) from exc

            candidate = AccountScore(
                organization_id=organization_id,
                account_id=account_id,
                version=(prior.version if prior else 0) + 1,
                score=result.score,
                tier=result.tier.value,
                trend=trend_for(
                    result.score, prior.score if prior else None, config["trend_threshold_pct"]
                ).value,
                factors=[f.model_dump() for f in result.factors],
                signal_count=result.signal_count,
                user_count=result.user_count,
                last_signal_at=result.last_signal_at,
                computed_at=as_of,
            )
            try:
                with db.begin_nested():
                    db.add(candidate)
            except IntegrityError:
                logger.warning(
                    "Score version conflict: account=%s version=%s attempt=%d/%d",
                    account_id,
                    candidate.version,
                    attempt,
                    max_attempts,
                )
                continue
            db.commit()
            snapshot = candidate
            break

    if snapshot is None:
        raise ConflictError(
            f"Score for account {account_id} kept changing; gave up after {max_attempts} attempts"
        )

    db.refresh(snapshot)
    payload = {
        "account_id": account_id,
        "score": snapshot.score,
        "tier": snapshot.tier,
        "trend": snapshot.trend,
        "version": snapshot.version,
        "previous_score": prior.score if prior else None,
    }
    events.emit(events.SCORE_COMPUTED, organization_id, payload)
    if prior is None or prior.score != snapshot.score:
        events.emit(events.SCORE_CHANGED, organization_id, payload)
    logger.info(
        "Scored account: org=%s account=%s score=%d tier=%s trend=%s version=%d",
        organization_id,
        account_id,
        snapshot.score,
        snapshot.tier,
        snapshot.trend,
        snapshot.version,
    )

    if evaluate_alerts:
        evaluate_account(db, organization_id, account_id, before=prior, after=snapshot)
    return snapshot


def get_account_score(db: Session, organization_id: str, account_id: int) -> AccountScore:
    """Current (latest) snapshot.

    Raises:
        NotFoundError: unknown account or never scored.
    """
    get_account_or_404(db, organization_id, account_id)
    snapshot = latest_snapshot(db, account_id)
    if snapshot is None:
        raise NotFoundError(f"Account {account_id} has not been scored")
    return snapshot


def get_score_history(
    db: Session, organization_id: str, account_id: int, days: int = 30
) -> list[AccountScore]:
    """Snapshots computed in the last ``days`` days, oldest first."""
    get_account_or_404(db, organization_id, account_id)
    since = utcnow() - timedelta(days=days)
    return list(
        db.scalars(
            select(AccountScore)
            .where(AccountScore.account_id == account_id, AccountScore.computed_at >= since)
            .order_by(AccountScore.version.asc())
        ).all()
    )


def list_top_accounts(
    db: Session, organization_id: str, limit: int = 10, tier: str | None = None
) -> list[TopAccountItem]:
    """Accounts by current score, highest first."""
    latest = (
        select(AccountScore.account_id, func.max(AccountScore.version).label("version"))
        .where(AccountScore.organization_id == organization_id)
        .group_by(AccountScore.account_id)
        .subquery()
    )
    query = (
        select(AccountScore, Account)
        .join(
            latest,
            (AccountScore.account_id == latest.c.account_id)
            & (AccountScore.version == latest.c.version),
        )
        .join(Account, Account.id == AccountScore.account_id)
        .order_by(AccountScore.score.desc(), Account.id.asc())
        .limit(limit)
    )
    if tier:
        query = query.where(AccountScore.tier == tier)
    return [
        TopAccountItem(
            account_id=account.id,
            account_name=account.name,
            domain=account.domain,
            score=snapshot.score,
            tier=snapshot.tier,
            trend=snapshot.trend,
            computed_at=snapshot.computed_at,
        )
        for snapshot, account in db.execute(query).all()
    ]
