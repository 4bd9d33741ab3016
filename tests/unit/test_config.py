# tests/unit/test_config.py
from __future__ import annotations

import pytest

from localfinder.core.config import require_contact_user_agent
from tests.fixtures import make_settings


def test_list_settings_are_split_and_trimmed():
    s = make_settings(
        OVERPASS_ENDPOINTS=" https://a.test/api , ,https://b.test/api",
        CORS_ALLOW_ORIGINS="http://localhost:3000, https://finder.example",
    )
    assert s.overpass_endpoints() == ["https://a.test/api", "https://b.test/api"]
    assert s.cors_origins() == ["http://localhost:3000", "https://finder.example"]


def test_debounce_is_clamped():
    assert make_settings(SEARCH_DEBOUNCE_S=0.1).SEARCH_DEBOUNCE_S == 0.25
    assert make_settings(SEARCH_DEBOUNCE_S="0.3").SEARCH_DEBOUNCE_S == 0.3
    assert make_settings(SEARCH_DEBOUNCE_S="junk").SEARCH_DEBOUNCE_S == 0.3


def test_empty_cache_bound_means_unbounded():
    assert make_settings(SEARCH_CACHE_MAX_ENTRIES="").SEARCH_CACHE_MAX_ENTRIES is None
    assert make_settings().SEARCH_CACHE_MAX_ENTRIES == 512


def test_country_codes_blank_is_none():
    assert make_settings(AREA_COUNTRY_CODES="  ").area_country_codes() is None
    assert make_settings(AREA_COUNTRY_CODES="za,bw").area_country_codes() == "za,bw"


def test_zero_cache_bound_means_unbounded():
    assert make_settings(SEARCH_CACHE_MAX_ENTRIES=0).SEARCH_CACHE_MAX_ENTRIES is None
    assert make_settings(SEARCH_CACHE_MAX_ENTRIES="-3").SEARCH_CACHE_MAX_ENTRIES is None


def test_empty_user_agent_is_refused():
    with pytest.raises(RuntimeError, match="CONTACT_USER_AGENT"):
        require_contact_user_agent(make_settings(CONTACT_USER_AGENT="  "))
    assert require_contact_user_agent(make_settings()).startswith("LocalFinderTests/")
