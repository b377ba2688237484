# backend/strataguard/config.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    app_name: str = "StrataGuard"
    app_version: str = "2026-10-19.v1"
    database_url: str = "sqlite:///./strataguard.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # Links in outgoing email point here
    frontend_url: str = "http://localhost:5173"

    # ---- Auth ----
    auth_mode: str = "dev"  # dev|jwt
    dev_auto_provision: bool = True
    dev_header_user_email: str = "X-User-Email"
    dev_header_user_role: str = "X-User-Role"

    jwt_secret: str = "dev-change-me"
    jwt_exp_minutes: int = 60 * 24  # 1 day
    jwt_cookie_name: str = "strataguard_jwt"
    jwt_cookie_secure: int = 0
    jwt_cookie_samesite: str = "lax"

    # ---- Attachments ----
    upload_dir: str = "./uploads"
    max_attachments: int = 5
    max_attachment_bytes: int = 5 * 1024 * 1024  # 5MB
    allowed_attachment_mime_types: list[str] = ["image/jpeg", "image/png", "image/gif", "application/pdf"]
    allowed_attachment_extensions: list[str] = [".jpg", ".jpeg", ".png", ".gif", ".pdf"]
    virus_scanning_enabled: bool = False
    clamscan_path: str = "clamdscan"
    virus_scan_timeout_seconds: int = 60

    # ---- Public dispute flow ----
    access_link_ttl_days: int = 14
    verification_code_ttl_minutes: int = 10
    verification_code_pepper: str = "dev-pepper-change-me"
    verification_codes_per_hour: int = 5
    public_session_ttl_hours: int = 24
    public_session_header: str = "X-Public-Session-Id"
    public_rate_limit_max: int = 50
    public_rate_limit_window_seconds: int = 15 * 60

    # ---- Lifecycle policy ----
    allow_redispute_after_decision: bool = True
    restrict_delete_to_admins: bool = False

    # ---- Bylaws ----
    bylaw_import_max_bytes: int = 10 * 1024 * 1024  # 10MB

    # ---- Mail ----
    mail_transport: str = "log"  # log|smtp
    mail_from: str = '"StrataGuard System" <notifications@strataguard.com>'
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_timeout_seconds: int = 30

    # ---- Celery ----
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    celery_task_always_eager: bool = False

    # ---- Notification delivery ----
    notification_max_attempts: int = 3
    notification_retry_base_seconds: int = 5
    notification_retry_max_seconds: int = 120
    notification_sweep_batch: int = 100

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod:
            if (self.auth_mode or "").strip().lower() == "dev":
                raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")
            if self.jwt_secret == "dev-change-me":
                raise ValueError("SECURITY: jwt_secret must be set in prod")
            if self.verification_code_pepper == "dev-pepper-change-me":
                raise ValueError("SECURITY: verification_code_pepper must be set in prod")
            if (self.mail_transport or "log").strip().lower() == "log":
                raise ValueError("SECURITY: mail_transport=log is not allowed in prod")

            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")

    @property
    def is_prod(self) -> bool:
        return (self.app_env or "").strip().lower() in ("prod", "production")


settings = Settings()
