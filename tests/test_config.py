"""Tests for environment parsing in linkpeek/config.py."""

import logging

from linkpeek.api.models import DEFAULT_USER_AGENT
from linkpeek.config import load_resolve_options


class TestLoadResolveOptions:
    def test_defaults_enable_cache_and_ssrf(self):
        options = load_resolve_options({})
        assert options.user_agent == DEFAULT_USER_AGENT
        assert options.timeout_ms == 10_000
        assert options.max_redirects == 5
        assert options.cache.enabled is True
        assert options.cache.max == 1000
        assert options.cache.ttl_ms == 24 * 60 * 60 * 1000
        assert options.ssrf_protection.enabled is True
        assert options.allowlist_domains is None

    def test_reads_values(self):
        options = load_resolve_options(
            {
                "LINKPEEK_USER_AGENT": "previewbot/2",
                "LINKPEEK_TIMEOUT_MS": "2500",
                "LINKPEEK_MAX_BYTES": "4096",
                "LINKPEEK_MAX_REDIRECTS": "0",
                "LINKPEEK_ALLOWLIST": "Example.com, news.example.org ,",
                "LINKPEEK_BLOCKLIST": "ads.example.net",
                "LINKPEEK_CACHE_ENABLED": "false",
                "LINKPEEK_CACHE_TTL_MS": "60000",
                "LINKPEEK_CACHE_MAX": "50",
                "LINKPEEK_SSRF_PROTECTION": "off",
            }
        )
        assert options.user_agent == "previewbot/2"
        assert options.timeout_ms == 2500
        assert options.max_bytes == 4096
        assert options.max_redirects == 0
        assert options.allowlist_domains == ["example.com", "news.example.org"]
        assert options.blocklist_domains == ["ads.example.net"]
        assert options.cache.enabled is False
        assert options.cache.ttl_ms == 60_000
        assert options.cache.max == 50
        assert options.ssrf_protection.enabled is False

    def test_bad_numbers_fall_back_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="linkpeek.config"):
            options = load_resolve_options({"LINKPEEK_TIMEOUT_MS": "soon"})
        assert options.timeout_ms == 10_000
        assert "LINKPEEK_TIMEOUT_MS" in caplog.text

    def test_bad_boolean_falls_back(self):
        options = load_resolve_options({"LINKPEEK_SSRF_PROTECTION": "maybe"})
        assert options.ssrf_protection.enabled is True

    def test_out_of_range_numbers_clamped(self):
        options = load_resolve_options(
            {"LINKPEEK_TIMEOUT_MS": "-5", "LINKPEEK_MAX_REDIRECTS": "-1", "LINKPEEK_CACHE_MAX": "0"}
        )
        assert options.timeout_ms == 1
        assert options.max_redirects == 0
        assert options.cache.max == 1
