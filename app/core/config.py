from functools import lru_cache
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class OtpSettings(BaseModel):
    code_length: int = Field(6, description="Number of digits in a verification code")
    ttl_minutes: int = Field(10, description="Minutes before an issued code expires")
    max_attempts: int = Field(3, description="Failed verifications allowed per issued code")
    sweep_enabled: bool = Field(True, description="Run the expired-code sweeper inside the API process")
    sweep_interval_s: int = Field(300, description="Seconds between two sweeps")
    sweep_lock_ttl_s: int = Field(60, description="Lifetime of the single-sweeper lock")


class RateLimitSettings(BaseModel):
    signin_ip_window_s: int = Field(60, description="Time window for per-IP sign-in attempts")
    signin_ip_max: int = Field(10, description="Max attempts per IP within the window")
    signin_email_window_s: int = Field(900, description="Time window for per-email attempts")
    signin_email_max: int = Field(10, description="Max attempts per email within the window")
    lock_minutes: int = Field(10, description="Lock duration once threshold exceeded")
    resend_window_s: int = Field(600, description="Time window for verification code resends")
    resend_max: int = Field(5, description="Max resends per email within the window")


class Settings(BaseSettings):
    api_title: str = "CardCRM Auth API"
    api_version: str = "1.0.0"

    database_url: str = Field(..., env="DATABASE_URL")
    redis_url: str = Field(..., env="REDIS_URL")

    jwt_secret: str = Field(..., env="JWT_SECRET")
    jwt_iss: str = Field(..., env="JWT_ISS")
    access_token_days: int = 7

    log_level: str = Field("INFO", env="LOG_LEVEL")

    mail_sender: str = Field(..., env="MAIL_SENDER")
    mail_from_name: str = "CardCRM"
    mail_host: str = Field(..., env="MAIL_HOST")
    mail_port: int = Field(465, env="MAIL_PORT")
    mail_username: str = Field(..., env="MAIL_USERNAME")
    mail_password: str = Field(..., env="MAIL_PASSWORD")
    mail_use_tls: bool = False
    mail_use_ssl: bool = True

    otp: OtpSettings = OtpSettings()
    rate_limit: RateLimitSettings = RateLimitSettings()

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_nested_delimiter = "__"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
