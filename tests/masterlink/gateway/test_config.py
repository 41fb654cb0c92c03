import pytest

from masterlink.gateway.config import Settings

ENV_NAMES = (
    "PARTNER_API_KEY",
    "CM_API_KEY",
    "CDN_URL",
    "MASTERING_CLOUDFRONT_URL",
    "NEXT_PUBLIC_MASTERING_CLOUDFRONT_URL",
    "PARENT_BASE_URL",
    "ENV_FILE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    # keep a developer's .env out of the way
    monkeypatch.chdir(tmp_path)


def test_defaults():
    settings = Settings()

    assert settings.parent_base_url == "https://chosenmasters.com"
    assert settings.partner_api_key == ""
    assert settings.cdn_url is None
    assert settings.probe_max_hits == 3
    assert settings.probe_timeout_seconds == 8
    assert settings.probe_default_extensions == ["mp3", "wav", "m4a", "flac"]


def test_partner_key_aliases(monkeypatch):
    monkeypatch.setenv("CM_API_KEY", "cm-key")
    assert Settings().partner_api_key == "cm-key"

    monkeypatch.setenv("PARTNER_API_KEY", "partner-key")
    assert Settings().partner_api_key == "partner-key"


@pytest.mark.parametrize("name", ["MASTERING_CLOUDFRONT_URL", "NEXT_PUBLIC_MASTERING_CLOUDFRONT_URL"])
def test_cdn_url_aliases(monkeypatch, name):
    monkeypatch.setenv(name, "d123.cloudfront.net")

    assert Settings().cdn_url == "d123.cloudfront.net"


def test_parent_base_url_trailing_slash_is_stripped(monkeypatch):
    monkeypatch.setenv("PARENT_BASE_URL", "https://parent.example.com//")

    assert Settings().parent_base_url == "https://parent.example.com"


def test_env_file(tmp_path):
    (tmp_path / ".env").write_text("CM_API_KEY=from-file\nMASTERING_CLOUDFRONT_URL=cdn.example.com\n")

    settings = Settings()

    assert settings.partner_api_key == "from-file"
    assert settings.cdn_url == "cdn.example.com"
