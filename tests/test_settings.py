from lirax.models import Credentials
from lirax.settings import Settings


def test_from_env_reads_aliases():
    settings = Settings.from_env(
        {
            "LIRAX_BASE_URL": "https://lirax.example",
            "LIRAX_TOKEN": "abc123xyz",
            "LIRAX_RETRIES": "5",
            "LIRAX_SSL_VERIFY": "false",
            "LIRAX_EVENT_FILTER": "contact, event,",
            "LIRAX_REDIS_DB": "",
            "UNRELATED": "ignored",
        }
    )

    assert settings.base_url == "https://lirax.example"
    assert settings.retries == 5
    assert settings.ssl_verify is False
    assert settings.event_filter == ["contact", "event"]
    assert settings.redis_db is None
    assert settings.cache_provider == "memory"


def test_credentials_from_settings_hide_token():
    settings = Settings(
        base_url="https://a.example",
        secondary_base_url="",
        token="abc123xyz",
        tenant_id="",
    )

    credentials = Credentials.from_settings(settings)

    assert credentials.endpoints == ["https://a.example"]
    assert credentials.breaker_key == "default"
    assert "abc123xyz" not in repr(credentials)
    assert credentials.token.get_secret_value() == "abc123xyz"
