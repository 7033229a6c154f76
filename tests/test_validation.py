import pytest

from app.services.common import clean_text, host_from_url, is_valid_http_url


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com",
        "http://example.com",
        "HTTPS://EXAMPLE.COM/Path",
        "http://localhost:8000/path?q=1#frag",
        "https://user:pw@sub.example.org:8443/a/b",
        "http://192.168.0.1/",
    ],
)
def test_http_and_https_urls_are_accepted(url):
    assert is_valid_http_url(url)


@pytest.mark.parametrize(
    "url",
    [
        "",
        "example.com",
        "www.example.com/path",
        "/relative/path",
        "../up",
        "ftp://example.com/file",
        "javascript:alert(1)",
        "mailto:someone@example.com",
        "file:///etc/passwd",
        "https://",
        "https:example.com",
        "http://exa mple.com",
        "http://example.com:notaport/",
        None,
        42,
    ],
)
def test_everything_else_is_rejected(url):
    assert not is_valid_http_url(url)


def test_host_from_url_falls_back_to_input():
    assert host_from_url("https://docs.python.org/3/") == "docs.python.org"
    assert host_from_url("not a url") == "not a url"


def test_clean_text_trims_strings_only():
    assert clean_text("  hello ") == "hello"
    assert clean_text("   ") == ""
    assert clean_text(None) is None
    assert clean_text(12) is None
