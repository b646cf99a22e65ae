# src/ticket_checkout/config.py

from dataclasses import dataclass
import os

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    """
    Process-wide configuration.
    Built once at startup and handed to the app factory.
    """

    database_url: str
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    ticket_signing_secret: str = ""
    ticket_code_ttl_hours: int = 24
    currency: str = "INR"
    frontend_url: str = "http://localhost:5173"
    identity_header: str = "X-User-Id"
    db_connect_max_retries: int = 30
    db_connect_retry_delay: float = 1.5
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()

        # Imported here so a plain Settings(...) never probes local ports.
        from ticket_checkout.infrastructure.db.session import default_database_url

        return cls(
            database_url=os.getenv("DATABASE_URL") or default_database_url(),
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID", ""),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET", ""),
            razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET", ""),
            ticket_signing_secret=os.getenv("TICKET_SIGNING_SECRET") or os.getenv("JWT_SECRET", ""),
            ticket_code_ttl_hours=int(os.getenv("TICKET_CODE_TTL_HOURS", "24")),
            currency=os.getenv("PAYMENT_CURRENCY", "INR"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:5173"),
            identity_header=os.getenv("IDENTITY_HEADER", "X-User-Id"),
            db_connect_max_retries=int(os.getenv("DB_CONNECT_MAX_RETRIES", "30")),
            db_connect_retry_delay=float(os.getenv("DB_CONNECT_RETRY_DELAY", "1.5")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
