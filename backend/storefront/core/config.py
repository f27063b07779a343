"""
Application settings

All configuration is read with pydantic-settings from environment variables
and the project ``.env`` file, with type validation and defaults.

Sources, highest priority first:
1. environment variables
2. the ``.env`` file at the repository root
3. defaults declared below

Payment provider keys come in test/live pairs; the live pair is selected only
when ``ENVIRONMENT == "production"``. No provider credential has a usable
default: outside ``local`` a missing secret for the configured provider makes
settings validation fail, so the service refuses to start.
"""
import secrets
import warnings
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    HttpUrl,
    PostgresDsn,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


def parse_cors(v: Any) -> list[str] | str:
    """
    Parse the CORS origins setting

    Accepts either a comma separated string
    ("http://localhost:5173,https://shop.example.com") or a JSON list.

    Args:
        v: raw setting value

    Returns:
        list of origins, or the untouched JSON string for pydantic to decode

    Raises:
        ValueError: for any other type
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    Service configuration

    Reads every field from the environment (see module docstring for
    precedence). Secrets never fall back to literal credentials.
    """
    model_config = SettingsConfigDict(
        # .env lives at the repository root (one level above backend/)
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT signing key
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS origins without trailing slashes."""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str = "Storefront"
    SENTRY_DSN: HttpUrl | None = None

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "storefront"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Payments (shared)
    PAYMENT_PROVIDER: Literal["paystack", "yoco", "payfast"] = "paystack"
    PAYMENT_CURRENCY: str = "ZAR"
    PROVIDER_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Paystack
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    PAYSTACK_TEST_PUBLIC_KEY: str | None = None
    PAYSTACK_TEST_SECRET_KEY: str | None = None
    PAYSTACK_LIVE_PUBLIC_KEY: str | None = None
    PAYSTACK_LIVE_SECRET_KEY: str | None = None
    PAYSTACK_CALLBACK_URL: str = "http://localhost:5173/payment/verify"

    # Yoco
    YOCO_BASE_URL: str = "https://payments.yoco.com/api"
    YOCO_CHARGE_URL: str = "https://online.yoco.com/v1/charges/"
    YOCO_TEST_PUBLIC_KEY: str | None = None
    YOCO_TEST_SECRET_KEY: str | None = None
    YOCO_LIVE_PUBLIC_KEY: str | None = None
    YOCO_LIVE_SECRET_KEY: str | None = None
    YOCO_WEBHOOK_SECRET: str | None = None  # whsec_... signing secret
    YOCO_SUCCESS_URL: str = "http://localhost:5173/payment/verify"
    YOCO_CANCEL_URL: str = "http://localhost:5173/cart"
    YOCO_FAILURE_URL: str = "http://localhost:5173/payment/cancel"

    # PayFast
    PAYFAST_MERCHANT_ID: str | None = None
    PAYFAST_MERCHANT_KEY: str | None = None
    PAYFAST_PASSPHRASE: str | None = None
    PAYFAST_PROCESS_URL: str = "https://www.payfast.co.za/eng/process"
    PAYFAST_SANDBOX_PROCESS_URL: str = "https://sandbox.payfast.co.za/eng/process"
    PAYFAST_API_URL: str = "https://api.payfast.co.za"
    PAYFAST_RETURN_URL: str = "http://localhost:5173/payment/success"
    PAYFAST_CANCEL_URL: str = "http://localhost:5173/payment/cancel"
    PAYFAST_NOTIFY_URL: str = "http://localhost:8000/api/v1/payments/notify"
    # ITN sender addresses, enforced on live keys only
    PAYFAST_VALID_IPS: Annotated[list[str] | str, BeforeValidator(parse_cors)] = [
        "197.97.145.144",
        "197.97.145.145",
        "197.97.145.146",
        "197.97.145.147",
        "41.74.179.192",
        "41.74.179.193",
        "41.74.179.194",
        "41.74.179.195",
    ]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def payments_live(self) -> bool:
        """Live provider keys are used only in production."""
        return self.ENVIRONMENT == "production"

    @property
    def paystack_public_key(self) -> str | None:
        return self.PAYSTACK_LIVE_PUBLIC_KEY if self.payments_live else self.PAYSTACK_TEST_PUBLIC_KEY

    @property
    def paystack_secret_key(self) -> str | None:
        return self.PAYSTACK_LIVE_SECRET_KEY if self.payments_live else self.PAYSTACK_TEST_SECRET_KEY

    @property
    def yoco_public_key(self) -> str | None:
        return self.YOCO_LIVE_PUBLIC_KEY if self.payments_live else self.YOCO_TEST_PUBLIC_KEY

    @property
    def yoco_secret_key(self) -> str | None:
        return self.YOCO_LIVE_SECRET_KEY if self.payments_live else self.YOCO_TEST_SECRET_KEY

    def _required_provider_secrets(self) -> dict[str, str | None]:
        """Secrets the configured default provider cannot work without."""
        if self.PAYMENT_PROVIDER == "paystack":
            live = "LIVE" if self.payments_live else "TEST"
            return {f"PAYSTACK_{live}_SECRET_KEY": self.paystack_secret_key}
        if self.PAYMENT_PROVIDER == "yoco":
            live = "LIVE" if self.payments_live else "TEST"
            return {
                f"YOCO_{live}_SECRET_KEY": self.yoco_secret_key,
                "YOCO_WEBHOOK_SECRET": self.YOCO_WEBHOOK_SECRET,
            }
        return {
            "PAYFAST_MERCHANT_ID": self.PAYFAST_MERCHANT_ID,
            "PAYFAST_MERCHANT_KEY": self.PAYFAST_MERCHANT_KEY,
        }

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        Reject placeholder secrets

        Warns in ``local`` and raises anywhere else.

        Raises:
            ValueError: when a deployed environment still uses "changethis"
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    def _check_required_secret(self, var_name: str, value: str | None) -> None:
        if value:
            return
        message = f"{var_name} is not set; payments cannot be processed."
        if self.ENVIRONMENT == "local":
            warnings.warn(message, stacklevel=1)
        else:
            raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        """Fail fast on placeholder or missing secrets outside ``local``."""
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        for name, value in self._required_provider_secrets().items():
            self._check_default_secret(name, value)
            self._check_required_secret(name, value)

        return self


settings = Settings()  # type: ignore
