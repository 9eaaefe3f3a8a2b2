"""Tests for the Suno automation helpers that run without a browser."""
import asyncio
import json

import pytest

from createtree.schemas.generation import MusicGenerationRequest
from createtree.services.suno_automation import (
    SunoAutomation,
    SunoConfigurationError,
    convert_cookies,
    duration_label,
    load_cookies,
    parse_duration,
)

EXPORTED_COOKIE = {
    "domain": ".suno.ai",
    "expirationDate": 1767225600.75,
    "hostOnly": False,
    "httpOnly": True,
    "name": "__session",
    "path": "/",
    "sameSite": "lax",
    "secure": True,
    "session": False,
    "storeId": "0",
    "value": "abc123",
    "id": 1,
}


class TestConvertCookies:
    def test_extension_export(self):
        [cookie] = convert_cookies([EXPORTED_COOKIE])
        assert cookie == {
            "name": "__session",
            "value": "abc123",
            "domain": "suno.ai",
            "path": "/",
            "expires": 1767225600,
            "httpOnly": True,
            "secure": True,
            "sameSite": "Lax",
        }

    @pytest.mark.parametrize("raw,expected", [
        ("strict", "Strict"),
        ("no_restriction", "None"),
        ("unspecified", "None"),
        (None, "None"),
    ])
    def test_same_site_mapping(self, raw, expected):
        [cookie] = convert_cookies([dict(EXPORTED_COOKIE, sameSite=raw)])
        assert cookie["sameSite"] == expected

    def test_session_cookie_never_expires(self):
        raw = dict(EXPORTED_COOKIE)
        del raw["expirationDate"]
        assert convert_cookies([raw])[0]["expires"] == -1

    def test_nameless_cookies_dropped(self):
        assert convert_cookies([{"value": "x"}]) == []


class TestLoadCookies:
    def test_missing_file(self, tmp_path):
        with pytest.raises(SunoConfigurationError):
            load_cookies(tmp_path / "nope.json")

    def test_not_a_list(self, tmp_path):
        path = tmp_path / "cookies.json"
        path.write_text(json.dumps({"name": "x"}))
        with pytest.raises(SunoConfigurationError):
            load_cookies(path)

    def test_valid_file(self, tmp_path):
        path = tmp_path / "cookies.json"
        path.write_text(json.dumps([EXPORTED_COOKIE]))
        assert load_cookies(path)[0]["domain"] == "suno.ai"

    def test_generate_fails_before_browser_launch(self, tmp_path):
        automation = SunoAutomation(cookie_file=tmp_path / "nope.json", output_dir=tmp_path)
        request = MusicGenerationRequest(prompt="a calm lullaby")
        with pytest.raises(SunoConfigurationError):
            asyncio.run(automation.generate(request, "job-1"))


class TestPageParsing:
    @pytest.mark.parametrize("text,expected", [
        ("2:05", 125),
        ("Duration 0:59", 59),
        ("", None),
        ("unknown", None),
        (None, None),
    ])
    def test_parse_duration(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("seconds,label", [("60", "1 min"), ("120", "2 min"), ("90", "1.5 min")])
    def test_duration_label(self, seconds, label):
        assert duration_label(seconds) == label
