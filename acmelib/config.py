"""
Application configuration via Pydantic Settings.
All values can be overridden by environment variables or a .env file.
"""
from __future__ import annotations

from typing import Callable, List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    EnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from acmelib.crypto import KEY_FACTORIES, PrivateKey
from acmelib.directory import LETSENCRYPT, LETSENCRYPT_STAGING
from persist.file import FilePersist

KeyType = Literal["p256", "p384", "rsa2048", "rsa3072", "rsa4096"]


class _CommaFallbackMixin:
    """Return the raw string when JSON parsing fails.

    pydantic-settings calls json.loads() on complex-typed fields (List[str])
    before field validators run, so ``mailto:a@x.com,mailto:b@x.com`` would be
    rejected.  Passing the raw string through lets ``parse_contact`` split it.
    """

    def prepare_field_value(self, field_name, field, value, value_is_complex):  # type: ignore[override]
        try:
            return super().prepare_field_value(field_name, field, value, value_is_complex)  # type: ignore[misc]
        except ValueError:
            return value


class _CSVEnvSource(_CommaFallbackMixin, EnvSettingsSource):
    pass


class _CSVDotEnvSource(_CommaFallbackMixin, DotEnvSettingsSource):
    pass


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── CA ─────────────────────────────────────────────────────────────────
    CA_PROVIDER: Literal["letsencrypt", "letsencrypt_staging", "custom"] = "letsencrypt_staging"
    # Only consulted when CA_PROVIDER="custom"
    ACME_DIRECTORY_URL: str = ""
    ACME_CONTACT: List[str] = []

    # ── Transport ──────────────────────────────────────────────────────────
    ACME_TIMEOUT: float = 30.0
    ACME_CA_BUNDLE: str = ""       # Path to CA cert bundle; empty = system default
    ACME_INSECURE: bool = False    # Skip TLS verification (never use in production)
    ACME_NONCE_RETRIES: int = 3

    # ── Polling ────────────────────────────────────────────────────────────
    POLL_MAX_ATTEMPTS: int = 10
    POLL_INITIAL_INTERVAL: float = 1.0
    POLL_BACKOFF_FACTOR: float = 2.0
    POLL_MAX_INTERVAL: float = 30.0

    # ── Keys & storage ─────────────────────────────────────────────────────
    PERSIST_PATH: str = "./acme-store"
    ACCOUNT_KEY_TYPE: KeyType = "p256"
    DOMAIN_KEY_TYPE: KeyType = "p256"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            _CSVEnvSource(settings_cls),
            _CSVDotEnvSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("ACME_CONTACT", mode="before")
    @classmethod
    def parse_contact(cls, v: object) -> List[str]:
        """Accept comma-separated string or list; bare addresses get ``mailto:``."""
        if isinstance(v, str):
            v = [c.strip() for c in v.split(",") if c.strip()]
        if isinstance(v, list):
            return [c if ":" in c else f"mailto:{c}" for c in v]
        return v  # type: ignore[return-value]

    @field_validator("POLL_MAX_ATTEMPTS", "ACME_NONCE_RETRIES")
    @classmethod
    def positive_count(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("POLL_INITIAL_INTERVAL", "POLL_MAX_INTERVAL", "ACME_TIMEOUT")
    @classmethod
    def positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @model_validator(mode="after")
    def resolve_acme_directory(self) -> "Settings":
        _PRESETS = {
            "letsencrypt":         LETSENCRYPT,
            "letsencrypt_staging": LETSENCRYPT_STAGING,
        }
        if self.CA_PROVIDER in _PRESETS:
            self.ACME_DIRECTORY_URL = _PRESETS[self.CA_PROVIDER]
        elif not self.ACME_DIRECTORY_URL:
            raise ValueError("ACME_DIRECTORY_URL must be set when CA_PROVIDER='custom'")
        return self

    def account_key_factory(self) -> Callable[[], PrivateKey]:
        return KEY_FACTORIES[self.ACCOUNT_KEY_TYPE]

    def domain_key_factory(self) -> Callable[[], PrivateKey]:
        return KEY_FACTORIES[self.DOMAIN_KEY_TYPE]


def make_persist(config: Settings | None = None) -> FilePersist:
    """File persistence rooted at ``PERSIST_PATH``."""
    return FilePersist((config or settings).PERSIST_PATH)


# Module-level singleton — import and use everywhere.
settings = Settings()
