import os
from typing import List


def _split_paths(raw: str) -> List[str]:
    return [p.strip() for p in raw.split(",") if p.strip()]


class Settings:
    # GitHub App config
    app_id: str
    app_private_key: str  # PEM contents (loaded from file path or env)
    webhook_secret: str

    # Server config
    log_level: str

    # General
    github_api_url: str
    service_version: str

    # Where repositories keep their configuration
    config_path: str
    legacy_config_paths: List[str]

    # HTTP/backoff config
    http_timeout_seconds: float
    resolve_timeout_seconds: float
    max_attempts: int
    backoff_base_seconds: float
    backoff_factor: float
    max_backoff_seconds: float

    def __init__(self) -> None:
        self.app_id = os.getenv("APP_ID", "").strip()
        # APP_PRIVATE_KEY is a filesystem path to the PEM file, or the PEM itself.
        apk_env = os.getenv("APP_PRIVATE_KEY", "").strip()
        pem_contents = apk_env
        if apk_env and os.path.isfile(apk_env):
            with open(apk_env, "r", encoding="utf-8") as f:
                pem_contents = f.read().strip()
        self.app_private_key = pem_contents
        self.webhook_secret = os.getenv("WEBHOOK_SECRET", "").strip()

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()

        # GitHub
        self.github_api_url = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
        self.service_version = os.getenv("SERVICE_VERSION", "dev")

        # Configuration lookup. LEGACY_CONFIG_PATHS is ordered; the first valid file wins.
        self.config_path = os.getenv("CONFIG_PATH", ".bulldozer.v1.yml").strip()
        self.legacy_config_paths = _split_paths(os.getenv("LEGACY_CONFIG_PATHS", ".bulldozer.yml"))

        self.http_timeout_seconds = float(os.getenv("HTTP_TIMEOUT_SECONDS", "60"))
        # Upper bound on the time one resolution may spend fetching files
        self.resolve_timeout_seconds = float(os.getenv("RESOLVE_TIMEOUT_SECONDS", "30"))
        self.max_attempts = int(os.getenv("MAX_ATTEMPTS", "3"))
        self.backoff_base_seconds = float(os.getenv("BACKOFF_BASE_SECONDS", "0.5"))
        self.backoff_factor = float(os.getenv("BACKOFF_FACTOR", "2.0"))
        self.max_backoff_seconds = float(os.getenv("MAX_BACKOFF_SECONDS", "10"))


SETTINGS = Settings()
