import os


class Settings:
    def __init__(self):
        self.app_name = "PrepX IQ"
        self.api_version = "1.0.0"
        self.environment = os.getenv("PREPX_ENV", "development")
        self.secret_key = os.getenv("SECRET_KEY", "CHANGE_ME")
        self.SECRET_KEY = self.secret_key
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
        self.ACCESS_TOKEN_EXPIRE_MINUTES = self.access_token_expire_minutes
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./prepx.db")
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        # Outbound SMS provider calls
        self.sms_timeout_seconds = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))
        self.notification_max_workers = int(os.getenv("NOTIFICATION_MAX_WORKERS", "5"))
        self.lead_export_limit = 1000


_settings_instance = None


def get_settings():
    """Return a singleton Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
