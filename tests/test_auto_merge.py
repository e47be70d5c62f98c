"""Tests for automatic contact merge after signal resolution."""

from __future__ import annotations

from contextlib import nullcontext
from datetime import datetime
from unittest.mock import patch

from sqlalchemy import func, select

from sigscore.config import get_settings
from sigscore.errors import ConflictError
from sigscore.ingestion.ingest import ingest_signal
from sigscore.models import Contact, ContactMergeLog, Signal
from sigscore.models.enums import IdentityType
from sigscore.pipeline.background import process_new_signals
from sigscore.schemas.identity import IdentityHint
from sigscore.services.identity.auto_merge import (
    auto_merge_if_high_confidence,
    merge_cooldowns,
)
from tests.factories import make_contact, make_signal
from tests.test_constants import TEST_ORG

NOW = datetime(2026, 3, 1, 12, 0, 0)

GITHUB_HINT = IdentityHint(type=IdentityType.GITHUB, value="alicedev", verified=True)


def _contacts(db) -> int:
    return db.scalar(select(func.count(Contact.id)))


class TestAutoMerge:
    def test_merges_single_high_confidence_overlap(self, db):
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        dev = make_contact(db, [(IdentityType.GITHUB, "alicedev", True)])
        alice_id, dev_id = alice.id, dev.id

        survivor = auto_merge_if_high_confidence(db, TEST_ORG, alice_id, [GITHUB_HINT])

        assert survivor == alice_id
        assert db.get(Contact, dev_id) is None
        assert {(i.type, i.value) for i in db.get(Contact, alice_id).identities} == {
            ("EMAIL", "alice@acme.io"),
            ("GITHUB", "alicedev"),
        }
        log = db.scalar(select(ContactMergeLog))
        assert (log.primary_contact_id, log.merged_contact_id) == (alice_id, dev_id)

    def test_contact_with_more_signals_is_kept(self, db):
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        dev = make_contact(db, [(IdentityType.GITHUB, "alicedev", True)])
        alice_id, dev_id = alice.id, dev.id
        make_signal(db, NOW, contact=dev, actor_key="github:alicedev")

        survivor = auto_merge_if_high_confidence(db, TEST_ORG, alice_id, [GITHUB_HINT])

        assert survivor == dev_id
        assert db.get(Contact, alice_id) is None

    def test_below_threshold_is_left_alone(self, db):
        """An unverified handle (0.7) is not strong enough at the default 0.8."""
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        make_contact(db, [(IdentityType.GITHUB, "alicedev", False)])
        assert auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT]) == alice.id
        assert _contacts(db) == 2

    def test_threshold_is_configurable(self, db):
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        make_contact(db, [(IdentityType.GITHUB, "alicedev", False)])
        with patch.object(get_settings(), "auto_merge_threshold", 0.7):
            auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT])
        assert _contacts(db) == 1

    def test_several_overlapping_contacts_need_review(self, db):
        """Overlap with more than one other contact never merges automatically."""
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        make_contact(db, [(IdentityType.GITHUB, "alicedev", True)])
        make_contact(db, [(IdentityType.NPM, "alicedev", True)])
        hints = [GITHUB_HINT, IdentityHint(type=IdentityType.NPM, value="alicedev", verified=True)]

        assert auto_merge_if_high_confidence(db, TEST_ORG, alice.id, hints) == alice.id
        assert _contacts(db) == 3
        assert db.scalar(select(func.count(ContactMergeLog.id))) == 0

    def test_shared_ip_never_merges(self, db):
        alice = make_contact(
            db, [(IdentityType.EMAIL, "alice@acme.io", True), (IdentityType.IP, "10.0.0.1", False)]
        )
        make_contact(db, [(IdentityType.IP, "10.0.0.1", False)])
        ip_hint = IdentityHint(type=IdentityType.IP, value="10.0.0.1", verified=True)
        assert auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [ip_hint]) == alice.id
        assert _contacts(db) == 2

    def test_pair_cooldown_limits_attempts(self, db):
        """A pair is attempted once per cooldown window, even when the merge fails."""
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        make_contact(db, [(IdentityType.GITHUB, "alicedev", True)])
        with patch(
            "sigscore.services.identity.auto_merge.merge_contacts",
            side_effect=ConflictError("Contacts already merged"),
        ) as merge:
            auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT])
            auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT])
        assert merge.call_count == 1
        assert auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT]) == alice.id
        assert _contacts(db) == 2

        merge_cooldowns.clear()
        auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT])
        assert _contacts(db) == 1

    def test_disabled(self, db):
        alice = make_contact(db, [(IdentityType.EMAIL, "alice@acme.io", True)])
        make_contact(db, [(IdentityType.GITHUB, "alicedev", True)])
        with patch.object(get_settings(), "auto_merge_enabled", False):
            auto_merge_if_high_confidence(db, TEST_ORG, alice.id, [GITHUB_HINT])
        assert _contacts(db) == 2


class TestAutoMergeAfterIngest:
    def test_signal_naming_two_contacts_merges_them(self, db):
        """A signal carrying both an email and a handle joins the contacts holding them."""
        dev = ingest_signal(
            db,
            TEST_ORG,
            {
                "source_type": "GITHUB",
                "type": "repo_star",
                "actor_id": "github:alicedev",
                "metadata": {"repo": "acme/sdk"},
                "timestamp": NOW.isoformat(),
            },
        ).signal
        docs = ingest_signal(
            db,
            TEST_ORG,
            {
                "source_type": "DOCS",
                "type": "docs_view",
                "actor_id": "alice@acme.io",
                "timestamp": NOW.isoformat(),
            },
        ).signal
        both = ingest_signal(
            db,
            TEST_ORG,
            {
                "source_type": "PRODUCT_API",
                "type": "api_call",
                "actor_id": "alice@acme.io",
                "anonymous_id": "github:alicedev",
                "timestamp": NOW.isoformat(),
            },
        ).signal
        dev_id, docs_contact = dev.id, docs.actor_id
        assert both.actor_id == docs_contact
        assert _contacts(db) == 2

        process_new_signals(lambda: nullcontext(db), TEST_ORG, [both.id])

        assert _contacts(db) == 1
        assert db.get(Signal, dev_id).actor_id == docs_contact
