from decimal import Decimal
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    Values come from the environment, `config.env` at the repository root, or
    a local `.env`. See `config.env.example` for the full list.
    """

    model_config = SettingsConfigDict(
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="pos", validation_alias="DB_USER")
    db_password: str = Field(default="pos", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="pos", validation_alias="DB_NAME")
    # Full SQLAlchemy URL; wins over the DB_* parts when set (e.g. sqlite for tests)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS"
    )

    # Empty string disables live order events
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")

    tax_rate: Decimal = Field(default=Decimal("0.08"), validation_alias="TAX_RATE")
    # 0 disables the stale pending-order sweep
    stale_order_minutes: int = Field(default=0, validation_alias="STALE_ORDER_MINUTES")

    vnp_tmn_code: str = Field(default="", validation_alias="VNP_TMN_CODE")
    vnp_hash_secret: str = Field(default="", validation_alias="VNP_HASH_SECRET")
    vnp_api_url: str = Field(
        default="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        validation_alias="VNP_API_URL",
    )
    vnp_return_url: str = Field(
        default="http://localhost:3000/payment-result",
        validation_alias="VNP_RETURN_URL",
    )
    # Local business time: report day boundaries and gateway timestamps
    timezone_name: str = Field(default="Asia/Ho_Chi_Minh", validation_alias="TIMEZONE")

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # psycopg driver (v3)
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
