import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    database_name: str
    mongo_transactions: bool
    jwt_secret: str
    jwt_expire_days: int
    storage_root: str
    public_base_url: str
    xendit_api_key: str
    xendit_base_url: str
    xendit_webhook_token: str
    shipping_fee: int
    low_stock_threshold: int
    auto_deliver_days: int
    seed_demo_data: bool
    admin_email: str
    admin_password: str
    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "reseller_commerce"),
            mongo_transactions=_flag("MONGO_TRANSACTIONS", "true"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            jwt_expire_days=int(os.getenv("JWT_EXPIRE_DAYS", 7)),
            storage_root=os.getenv("STORAGE_ROOT", "uploads"),
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000"),
            xendit_api_key=os.getenv("XENDIT_API_KEY", ""),
            xendit_base_url=os.getenv("XENDIT_BASE_URL", "https://api.xendit.co"),
            xendit_webhook_token=os.getenv("XENDIT_WEBHOOK_TOKEN", ""),
            shipping_fee=int(os.getenv("SHIPPING_FEE", 15000)),
            low_stock_threshold=int(os.getenv("LOW_STOCK_THRESHOLD", 5)),
            auto_deliver_days=int(os.getenv("AUTO_DELIVER_DAYS", 4)),
            seed_demo_data=_flag("SEED_DEMO_DATA", "false"),
            admin_email=os.getenv("ADMIN_EMAIL", ""),
            admin_password=os.getenv("ADMIN_PASSWORD", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


settings = Settings.from_env()
