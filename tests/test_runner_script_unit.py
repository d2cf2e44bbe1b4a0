from __future__ import annotations

import pytest

from layoutlens.services import runner_script

TEMPLATED = {"useUrlTemplate": True, "urlTemplate": "/{locale}{pathname}"}
QUERY_TEMPLATED = {"useUrlTemplate": True, "urlTemplate": "?lang={locale}"}


@pytest.mark.unit
def test_path_template_substitutes_locale_and_pathname() -> None:
    url = runner_script.build_url("https://example.com/pricing?plan=pro#faq", TEMPLATED, "de-DE")

    assert url == "https://example.com/de-DE/pricing?plan=pro#faq"


@pytest.mark.unit
def test_query_template_keeps_path_and_fragment() -> None:
    assert (
        runner_script.build_url("https://example.com/pricing?plan=pro#faq", QUERY_TEMPLATED, "fr-FR")
        == "https://example.com/pricing?lang=fr-FR#faq"
    )
    assert runner_script.build_url("https://example.com", QUERY_TEMPLATED, "fr-FR") == "https://example.com/?lang=fr-FR"


@pytest.mark.unit
def test_template_is_ignored_unless_enabled() -> None:
    base = "https://example.com/pricing"

    assert runner_script.build_url(base, {"urlTemplate": "/{locale}{pathname}"}, "de-DE") == base
    assert runner_script.build_url(base, {"useUrlTemplate": True}, "de-DE") == base
    assert runner_script.build_url(base, {}, "de-DE") == base


@pytest.mark.unit
def test_template_that_is_neither_path_nor_query_returns_base_url() -> None:
    base = "https://example.com/pricing"

    assert runner_script.build_url(base, {"useUrlTemplate": True, "urlTemplate": "lang={locale}"}, "de-DE") == base


@pytest.mark.unit
def test_default_pass_without_locale_is_not_templated() -> None:
    base = "https://example.com/pricing"

    assert runner_script.build_url(base, TEMPLATED, None) == base


@pytest.mark.unit
def test_cookie_defaults_to_page_host_and_root_path() -> None:
    config = {"url": "https://shop.example.com/pricing", "cookie": {"name": "NEXT_LOCALE"}}

    assert runner_script.build_cookie(config, "en-GB") == {
        "name": "NEXT_LOCALE",
        "value": "en-GB",
        "domain": "shop.example.com",
        "path": "/",
        "sameSite": "Lax",
        "secure": False,
        "httpOnly": False,
    }


@pytest.mark.unit
def test_cookie_keeps_explicit_attributes() -> None:
    config = {
        "url": "https://shop.example.com/pricing",
        "cookie": {
            "name": "locale",
            "domain": ".example.com",
            "path": "/app",
            "sameSite": "Strict",
            "secure": True,
            "httpOnly": True,
        },
    }

    cookie = runner_script.build_cookie(config, "ja-JP")

    assert cookie["domain"] == ".example.com"
    assert cookie["path"] == "/app"
    assert cookie["sameSite"] == "Strict"
    assert cookie["secure"] is True
    assert cookie["httpOnly"] is True


@pytest.mark.unit
def test_same_site_none_forces_secure_except_on_localhost() -> None:
    remote = {"url": "https://example.com", "cookie": {"name": "locale", "sameSite": "None", "secure": False}}
    local = {"url": "http://localhost:3000/", "cookie": {"name": "locale", "sameSite": "None", "secure": True}}
    loopback = {"url": "http://127.0.0.1:8080/", "cookie": {"name": "locale", "sameSite": "None"}}

    assert runner_script.build_cookie(remote, "de-DE")["secure"] is True
    assert runner_script.build_cookie(local, "de-DE")["secure"] is False
    assert runner_script.build_cookie(local, "de-DE")["domain"] == "localhost"
    assert runner_script.build_cookie(loopback, "de-DE")["secure"] is False
