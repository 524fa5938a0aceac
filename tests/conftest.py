import pytest

GATEWAY_ENV_KEYS = (
    "SCHWAB_CLIENT_ID",
    "SCHWAB_CLIENT_SECRET",
    "SCHWAB_REDIRECT_URI",
    "SCHWAB_REDIRECT_URI_ALLOWED",
    "SCHWAB_ALLOW_ANY_REDIRECT",
    "SCHWAB_AUTH_URL",
    "SCHWAB_TOKEN_URL",
    "SCHWAB_SCOPE",
    "SCHWAB_ENFORCE_STATE",
    "SCHWAB_STATE_TTL_SECONDS",
    "SCHWAB_TOKEN_TIMEOUT",
    "SCHWAB_API_PREFIX",
    "SCHWAB_ENV",
    "SCHWAB_LOG_FILE",
    "SCHWAB_TOKEN_STORE_PATH",
    "FRONTEND_ORIGIN",
    "REDIS_URL",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_TOKENS_TABLE",
    "HOST",
    "PORT",
)


@pytest.fixture
def gateway_env(monkeypatch, tmp_path):
    """A minimal valid environment with nothing inherited from the shell."""
    for key in GATEWAY_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SCHWAB_CLIENT_ID", "schwab-client")
    monkeypatch.setenv("SCHWAB_CLIENT_SECRET", "schwab-secret")
    monkeypatch.setenv("SCHWAB_REDIRECT_URI", "https://app.example.com/cb")
    monkeypatch.setenv("SCHWAB_TOKEN_STORE_PATH", str(tmp_path / "tokens.json"))
    monkeypatch.setenv("SCHWAB_API_DEBUG", "0")
    return monkeypatch
