import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    return lowered in {"1", "true", "yes", "y", "on"}


def _env_int(key: str, default: int) -> int:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    raw = (os.environ.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """
    Application environment config.
    """
    env: str  # 'development', 'staging', 'production'
    is_staging: bool
    supabase_url: str
    supabase_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        env = (os.environ.get("APP_ENV") or "development").strip().lower()
        supabase_url = (os.environ.get("SUPABASE_URL") or "").strip()
        supabase_key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()

        return AppConfig(
            env=env,
            is_staging=env == "staging",
            supabase_url=supabase_url,
            supabase_key=supabase_key,
        )

# Global Config Instance
app_config = AppConfig.from_env()


@dataclass(frozen=True)
class SMTPConfig:
    """
    SMTP 配置（从环境变量读取）

    中文注释:
    1) 该配置只存在于后端进程内，严禁泄露到前端。
    2) 允许在本地/测试环境缺省（此时邮件发送逻辑会优雅降级为“只记录日志”）。
    """

    host: str
    port: int
    user: Optional[str]
    password: Optional[str]
    from_email: str
    use_starttls: bool

    @staticmethod
    def from_env() -> Optional["SMTPConfig"]:
        host = (os.environ.get("SMTP_HOST") or "").strip()
        if not host:
            return None

        user = (os.environ.get("SMTP_USER") or "").strip() or None
        password = (os.environ.get("SMTP_PASSWORD") or "").strip() or None

        from_email = (
            os.environ.get("SMTP_FROM_EMAIL") or user or "no-reply@journal.local"
        ).strip()

        return SMTPConfig(
            host=host,
            port=_env_int("SMTP_PORT", 587),
            user=user,
            password=password,
            from_email=from_email,
            use_starttls=_env_bool("SMTP_USE_STARTTLS", True),
        )


@dataclass(frozen=True)
class WorkflowConfig:
    """
    投稿生命周期配置（APC、DOI、审稿期限、催办上限）

    中文注释:
    - APC_REQUIRED=false 或 APC_AMOUNT<=0 时，Accept 之后不再生成付款义务，发布也不再受付款闸门限制。
    - DOI 前缀与期刊 slug 仅用于生成 DOI 字符串；DOI 注册本身由外部系统负责。
    """

    apc_amount: float
    apc_currency: str
    apc_required: bool
    doi_prefix: str
    journal_slug: str
    review_due_default_days: int
    review_reminder_max: int
    frontend_origin: str
    feed_regenerate_url: Optional[str]

    @property
    def fee_required(self) -> bool:
        return self.apc_required and self.apc_amount > 0

    @staticmethod
    def from_env() -> "WorkflowConfig":
        currency = (os.environ.get("APC_CURRENCY") or "INR").strip().upper() or "INR"
        due_days = _env_int("REVIEW_DUE_DEFAULT_DAYS", 21)
        if due_days <= 0:
            due_days = 21

        return WorkflowConfig(
            apc_amount=_env_float("APC_AMOUNT", 299.00),
            apc_currency=currency,
            apc_required=_env_bool("APC_REQUIRED", True),
            doi_prefix=(os.environ.get("DOI_PREFIX") or "10.5555").strip(),
            journal_slug=(os.environ.get("JOURNAL_SLUG") or "journal").strip().lower(),
            review_due_default_days=due_days,
            review_reminder_max=max(_env_int("REVIEW_REMINDER_MAX", 3), 0),
            frontend_origin=(
                os.environ.get("FRONTEND_ORIGIN") or "http://localhost:3000"
            ).strip().rstrip("/"),
            feed_regenerate_url=(os.environ.get("FEED_REGENERATE_URL") or "").strip() or None,
        )


@dataclass(frozen=True)
class SentryConfig:
    enabled: bool
    dsn: Optional[str]
    environment: str
    traces_sample_rate: float

    @staticmethod
    def from_env() -> "SentryConfig":
        dsn = (os.environ.get("SENTRY_DSN") or "").strip() or None
        environment = (
            os.environ.get("SENTRY_ENVIRONMENT") or os.environ.get("APP_ENV") or "development"
        ).strip()
        rate = _env_float("SENTRY_TRACES_SAMPLE_RATE", 0.0)
        rate = min(max(rate, 0.0), 1.0)
        return SentryConfig(
            enabled=_env_bool("SENTRY_ENABLED", True),
            dsn=dsn,
            environment=environment,
            traces_sample_rate=rate,
        )


def get_admin_api_key() -> Optional[str]:
    """
    内部 Cron 接口鉴权 Key

    中文注释:
    - 仅用于 `/api/v1/internal/cron/*`，不属于用户体系。
    """

    raw = os.environ.get("ADMIN_API_KEY")
    return raw.strip() if raw else None
