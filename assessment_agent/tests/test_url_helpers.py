from __future__ import annotations

import pytest

from assessment_agent.utils.observability import redact_url
from assessment_agent.utils.url_helpers import is_valid_url, normalize_url


@pytest.mark.parametrize(
    "url",
    [
        "https://lh3.googleusercontent.com/abc",
        "https://docs.example.com",
        "https://img.example.com?x=1",
    ],
)
def test_valid_https_urls(url) -> None:
    assert is_valid_url(url) is True


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "http://img.example.com/a.png",
        "https://img.example.com/a b.png",
        "https://user@host.example.com/a.png",
        "ftp://img.example.com/a.png",
        "https:///nohost",
    ],
)
def test_invalid_urls(url) -> None:
    assert is_valid_url(url) is False


def test_normalize_url_trims_and_drops_dangling_query() -> None:
    assert normalize_url("  https://a.example.com/x?  ") == "https://a.example.com/x"
    assert normalize_url("   ") is None
    assert normalize_url(None) is None


def test_redact_url_masks_token_params() -> None:
    out = redact_url("https://a.example.com/img?token=abc&size=2")
    assert "abc" not in out
    assert "size=2" in out
