"""Tests for signal fingerprinting (canonical metadata, dedup key format)."""

from __future__ import annotations

from sigscore.ingestion.dedup import ANONYMOUS_ACTOR, canonicalize, generate_dedup_key, metadata_hash


class TestCanonicalize:
    def test_sorts_object_keys_recursively(self):
        """Nested objects sort keys; arrays keep order; None renders empty."""
        value = {"b": 1, "a": [2, {"d": "x", "c": None}]}
        assert canonicalize(value) == '{"a":[2,{"c":,"d":"x"}],"b":1}'

    def test_scalars_render_as_json(self):
        """Strings are quoted, booleans lowercase, numbers bare."""
        assert canonicalize("hi") == '"hi"'
        assert canonicalize(True) == "true"
        assert canonicalize(3.5) == "3.5"
        assert canonicalize(None) == ""

    def test_key_order_does_not_change_hash(self):
        """Two dicts with the same content in different order hash equally."""
        assert metadata_hash({"repo": "x", "ref": "main"}) == metadata_hash(
            {"ref": "main", "repo": "x"}
        )

    def test_array_order_changes_hash(self):
        """Arrays are ordered, so reordering them is a different payload."""
        assert metadata_hash({"tags": [1, 2]}) != metadata_hash({"tags": [2, 1]})


class TestGenerateDedupKey:
    def test_key_format(self):
        """source:actor:type:8-hex-hash."""
        key = generate_dedup_key("GITHUB", "github:octocat", "repo_star", {"repo": "acme/sdk"})
        source, actor_prefix, actor_name, signal_type, digest = key.split(":")
        assert (source, actor_prefix, actor_name, signal_type) == (
            "GITHUB",
            "github",
            "octocat",
            "repo_star",
        )
        assert len(digest) == 8
        assert all(ch in "0123456789abcdef" for ch in digest)

    def test_missing_actor_is_anonymous(self):
        """No actor id uses the anonymous placeholder."""
        key = generate_dedup_key("WEBSITE", None, "page_view", {})
        assert key.startswith(f"WEBSITE:{ANONYMOUS_ACTOR}:page_view:")

    def test_deterministic(self):
        """Same inputs give the same key."""
        args = ("NPM", "npm:dev", "package_download", {"package": "sdk", "version": "1.0"})
        assert generate_dedup_key(*args) == generate_dedup_key(*args)

    def test_metadata_change_changes_key(self):
        """Different metadata gives a different key."""
        a = generate_dedup_key("NPM", "npm:dev", "package_download", {"version": "1.0"})
        b = generate_dedup_key("NPM", "npm:dev", "package_download", {"version": "1.1"})
        assert a != b

    def test_empty_and_missing_metadata_differ(self):
        """None and {} are different canonical forms."""
        assert canonicalize({}) == "{}"
        assert generate_dedup_key("DOCS", "a@acme.io", "docs_view", None) != generate_dedup_key(
            "DOCS", "a@acme.io", "docs_view", {}
        )
