"""Unit tests for platform detection, enrichment parsing and dedup helpers."""

import pytest

from leadflow.integrations.exa import (
    EMAIL_ENRICHMENT_DESCRIPTION,
    FOLLOWER_ENRICHMENT_DESCRIPTION,
    WebsetItem,
    parse_item,
    parse_status,
)
from leadflow.pipeline.discovery import (
    dedupe_candidates,
    detect_platform,
    extract_email_from_enrichments,
    lead_fields_from_item,
    parse_follower_count,
)
from leadflow.utils import clean_email, is_valid_email, parse_count


class TestDetectPlatform:
    """Tests for mapping profile URLs to platforms."""

    @pytest.mark.parametrize(
        "url,platform",
        [
            ("https://www.tiktok.com/@janedoe", "tiktok"),
            ("https://instagram.com/janedoe", "instagram"),
            ("https://www.youtube.com/@janedoe", "youtube"),
            ("https://youtu.be/abc123", "youtube"),
            ("https://twitter.com/janedoe", "twitter"),
            ("https://x.com/janedoe", "twitter"),
            ("https://www.linkedin.com/in/janedoe", "linkedin"),
            ("tiktok.com/@janedoe", "tiktok"),
        ],
    )
    def test_known_hosts(self, url, platform):
        assert detect_platform(url) == platform

    def test_unknown_host_returns_none(self):
        assert detect_platform("https://janedoe.blog/about") is None

    def test_lookalike_domain_is_not_matched(self):
        """A host that merely ends with the same letters is not the platform."""
        assert detect_platform("https://notx.com/janedoe") is None
        assert detect_platform("https://mytiktok.com.evil.test/") is None

    def test_empty_url(self):
        assert detect_platform("") is None
        assert detect_platform(None) is None


class TestExtractEmail:
    """Tests for finding an email in the enrichment results."""

    def test_list_of_email_enrichments(self):
        enrichments = [
            {"format": "number", "result": ["12k"]},
            {"format": "email", "result": ["Jane@Example.COM"]},
        ]
        assert extract_email_from_enrichments(enrichments) == "jane@example.com"

    def test_enrichment_matched_by_description(self):
        enrichments = [{"description": EMAIL_ENRICHMENT_DESCRIPTION, "result": "jane@example.com"}]
        assert extract_email_from_enrichments(enrichments) == "jane@example.com"

    def test_direct_email_key(self):
        assert extract_email_from_enrichments({"email": "jane@example.com"}) == "jane@example.com"

    def test_keyed_by_description_with_value(self):
        enrichments = {EMAIL_ENRICHMENT_DESCRIPTION: {"value": "jane@example.com"}}
        assert extract_email_from_enrichments(enrichments) == "jane@example.com"

    def test_contact_email_key(self):
        assert extract_email_from_enrichments({"contact_email": "jane@example.com"}) == "jane@example.com"

    def test_invalid_candidate_is_skipped(self):
        enrichments = [
            {"format": "email", "result": ["not an email"]},
            {"format": "email", "result": ["jane@example.com"]},
        ]
        assert extract_email_from_enrichments(enrichments) == "jane@example.com"

    def test_nothing_found(self):
        assert extract_email_from_enrichments(None) is None
        assert extract_email_from_enrichments([]) is None
        assert extract_email_from_enrichments({"email": None}) is None


class TestFollowerCount:
    """Tests for follower-count parsing."""

    def test_number_enrichment(self):
        assert parse_follower_count([{"format": "number", "result": ["12,400"]}]) == 12400

    def test_suffixed_count(self):
        enrichments = [{"description": FOLLOWER_ENRICHMENT_DESCRIPTION, "result": ["1.2k followers"]}]
        assert parse_follower_count(enrichments) == 1200

    def test_dict_key(self):
        assert parse_follower_count({"followers": "3.5M"}) == 3_500_000

    def test_missing(self):
        assert parse_follower_count(None) is None
        assert parse_follower_count([{"format": "email", "result": ["a@b.co"]}]) is None


class TestParseHelpers:
    """Tests for the shared parsing utilities."""

    @pytest.mark.parametrize(
        "value,expected",
        [(12, 12), ("12,400", 12400), ("1.2k", 1200), ("2M", 2_000_000), ("n/a", None), (-3, None), (True, None)],
    )
    def test_parse_count(self, value, expected):
        assert parse_count(value) == expected

    def test_email_validation(self):
        assert is_valid_email("jane@example.com")
        assert not is_valid_email("jane@")
        assert not is_valid_email(42)
        assert clean_email("  Jane@Example.com ") == "jane@example.com"
        assert clean_email("nope") is None


class TestProviderPayloads:
    """Tests for reading provider payloads into items and statuses."""

    def test_parse_item(self):
        payload = {
            "id": "item_1",
            "properties": {"url": "https://www.tiktok.com/@jane", "person": {"name": "Jane Doe"}},
            "enrichments": [{"format": "email", "result": ["jane@example.com"]}],
        }
        item = parse_item(payload)

        assert item.url == "https://www.tiktok.com/@jane"
        assert item.title == "Jane Doe"
        assert item.raw == payload

    def test_parse_status_reads_first_search_progress(self):
        status = parse_status(
            {"status": "running", "searches": [{"status": "running", "progress": {"found": 7, "completion": 40}}]}
        )
        assert status.status == "running"
        assert status.found == 7
        assert not status.is_idle

    def test_canceled_search_reports_failed(self):
        status = parse_status({"status": "idle", "searches": [{"status": "canceled"}]})
        assert status.is_failed

    def test_lead_fields_from_item(self):
        item = WebsetItem(
            id="item_1",
            url="https://www.youtube.com/@jane",
            title="Jane Doe",
            enrichments=[
                {"format": "email", "result": ["JANE@example.com"]},
                {"format": "number", "result": ["5k"]},
            ],
            raw={"id": "item_1"},
        )
        fields = lead_fields_from_item(item)

        assert fields == {
            "url": "https://www.youtube.com/@jane",
            "name": "Jane Doe",
            "email": "jane@example.com",
            "platform": "youtube",
            "follower_count": 5000,
            "raw_data": {"id": "item_1"},
        }


class TestDedupeCandidates:
    """Tests for dropping known and repeated contacts."""

    def test_known_url_and_email_dropped(self):
        candidates = [
            {"url": "https://a.test", "email": "a@example.com"},
            {"url": "https://b.test", "email": "known@example.com"},
            {"url": "https://known.test", "email": None},
            {"url": "https://c.test", "email": None},
        ]
        fresh = dedupe_candidates(candidates, {"https://known.test"}, {"known@example.com"})

        assert [c["url"] for c in fresh] == ["https://a.test", "https://c.test"]

    def test_repeats_within_batch_keep_first(self):
        candidates = [
            {"url": "https://a.test", "email": "a@example.com", "name": "first"},
            {"url": "https://a.test", "email": None, "name": "same url"},
            {"url": "https://b.test", "email": "a@example.com", "name": "same email"},
        ]
        fresh = dedupe_candidates(candidates, set(), set())

        assert [c["name"] for c in fresh] == ["first"]
