# config.py (add validation)
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import ValidationError

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
    @property
    def patched_database_url(self):
        if self.database_url.startswith("postgres://"):
            return self.database_url.replace("postgres://", "postgresql://", 1)
        return self.database_url

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    reset_token_expire_minutes: int = 10
    database_url: str
    redis_url: Optional[str] = None

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    storage_folder: str = "artify"

    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""

    resend_api_key: str = ""
    mail_from: str = ""
    mail_from_name: str = "Artify Ghibli"
    support_email: str = ""
    client_url: str = "http://localhost:5173"
    server_url: str = "http://localhost:8000"

    max_upload_bytes: int = 10 * 1024 * 1024
    generation_delay_seconds: int = 0
    processing_timeout_minutes: int = 30
    reaper_interval_minutes: int = 5
    transform_timeout_seconds: int = 120
    worker_threads: int = 4

    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    default_rate_limit: str = "100 per 15 minutes"
    auth_rate_limit: str = "10 per hour"
    image_rate_limit: str = "20 per hour"
    support_rate_limit: str = "5 per day"

    environment: str = "development"
    log_level: str = "INFO"
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    def validate(self):
        required_vars = ['secret_key', 'database_url']
        if self.is_production:
            required_vars += [
                'cloudinary_cloud_name', 'cloudinary_api_key', 'cloudinary_api_secret',
                'razorpay_key_id', 'razorpay_key_secret', 'razorpay_webhook_secret',
            ]
        for var in required_vars:
            if not getattr(self, var, None):
                raise ValueError(f"Missing required config: {var}")
        if self.max_upload_bytes <= 0:
            raise ValueError("max_upload_bytes must be positive")
        if self.processing_timeout_minutes <= 0:
            raise ValueError("processing_timeout_minutes must be positive")

try:
    settings = Settings()
    settings.validate()
except ValidationError as ve:
    print("Config validation failed:", ve)
    raise
