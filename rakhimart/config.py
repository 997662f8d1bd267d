from pydantic_settings import BaseSettings
from typing import List, Optional
from urllib.parse import quote_plus

class Settings(BaseSettings):
    ENV: str = "production"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: Optional[str] = None
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "rakhimart"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # auth provider (issues the bearer tokens, owns user accounts)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""
    JWT_ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = "authenticated"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # payment gateway
    PAYMENT_PROVIDER: str = "cashfree"
    CURRENCY: str = "INR"
    CASHFREE_APP_ID: str = ""
    CASHFREE_SECRET_KEY: str = ""
    CASHFREE_MODE: str = "production"
    CASHFREE_API_VERSION: str = "2023-08-01"
    CASHFREE_WEBHOOK_SECRET: str = ""
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    WEBHOOK_TOLERANCE_SECONDS: int = 300
    PAYMENT_RETURN_URL: str = ""
    PAYMENT_NOTIFY_URL: str = ""

    # courier
    DELIVERY_PROVIDER: str = "delhivery"
    DELIVERY_API_KEY: str = ""
    DELIVERY_API_SECRET: Optional[str] = None

    # email
    EMAIL_PROVIDER: str = "brevo"
    EMAIL_API_KEY: str = ""
    MAILGUN_DOMAIN: Optional[str] = None
    MAIL_FROM: str = "orders@rakhimart.in"
    STORE_NAME: str = "RakhiMart"
    ADMIN_EMAILS: List[str] = []
    EMAIL_MAX_RETRIES: int = 3

    HTTP_TIMEOUT_SECONDS: float = 10.0

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]

    @property
    def database_url(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL

        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def cashfree_base_url(self):
        if self.CASHFREE_MODE == "production":
            return "https://api.cashfree.com/pg"
        return "https://sandbox.cashfree.com/pg"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
