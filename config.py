import os


class Settings:
    PROJECT_NAME: str = "Market Lab API"
    VERSION: str = "1.0.0"
    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")
    ALGO: str = "HS256"
    TOKEN_EXPIRE_MIN: int = int(os.getenv("TOKEN_EXPIRE_MIN", 7 * 24 * 60))
    REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 30))
    RESET_CODE_EXPIRE_MIN: int = 10
    DB_URL: str = os.getenv("DATABASE_URL", "sqlite:///./market_lab.db")
    SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
    MAX_DOCUMENT_SIZE: int = 5 * 1024 * 1024
    MAX_IMAGE_SIZE: int = 5 * 1024 * 1024
    MAX_PAYMENT_PROOF_SIZE: int = 10 * 1024 * 1024
    MAX_EXCEL_SIZE: int = 10 * 1024 * 1024
    MAX_PRODUCT_MEDIA_SIZE: int = 50 * 1024 * 1024

    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", 587))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASS", "")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "no-reply@marketlab.dz")
    SUPPORT_INBOX: str = os.getenv("SUPPORT_INBOX", "support@marketlab.dz")

    CORS_ORIGINS = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173",
    ).split(",")

    # optional bootstrap admin, created at startup when both are set
    ADMIN_EMAIL: str = os.getenv("ADMIN_EMAIL", "")
    ADMIN_PASSWORD: str = os.getenv("ADMIN_PASSWORD", "")

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_USER and self.SMTP_PASSWORD)


settings = Settings()
