import os
from decimal import Decimal


class Settings:
    def __init__(self):
        self.app_name = "ClassLedger"
        self.api_version = "1.0.0"
        self.environment = os.getenv("CLASSLEDGER_ENVIRONMENT", "development")
        self.secret_key = os.getenv("CLASSLEDGER_SECRET_KEY", "CHANGE_ME")
        self.SECRET_KEY = self.secret_key
        self.access_token_expire_minutes = int(os.getenv("CLASSLEDGER_TOKEN_EXPIRE_MINUTES", "30"))
        self.ACCESS_TOKEN_EXPIRE_MINUTES = self.access_token_expire_minutes
        self.database_url = os.getenv("CLASSLEDGER_DATABASE_URL", "sqlite:///./classledger.db")
        self.log_level = os.getenv("CLASSLEDGER_LOG_LEVEL", "INFO").upper()

        # Scheduling
        self.next_occurrence_lookahead_days = int(os.getenv("CLASSLEDGER_LOOKAHEAD_DAYS", "14"))
        self.billing_horizon_days = int(os.getenv("CLASSLEDGER_BILLING_HORIZON_DAYS", "180"))
        self.default_join_window_minutes = 15
        self.default_time_zone = os.getenv("CLASSLEDGER_TIME_ZONE", "UTC")

        # Billing
        self.default_currency = "USD"
        self.default_tax_rate = Decimal(os.getenv("CLASSLEDGER_TAX_RATE", "0"))
        self.default_platform_fee = Decimal(os.getenv("CLASSLEDGER_PLATFORM_FEE", "0"))
        self.payment_terms_days = int(os.getenv("CLASSLEDGER_PAYMENT_TERMS_DAYS", "7"))


_settings_instance = None


def get_settings():
    """Return a singleton Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
