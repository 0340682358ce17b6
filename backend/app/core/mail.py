import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import retry, stop_after_attempt, wait_exponential

from app.core.config import SMTPConfig

logger = logging.getLogger("manuscripts.mail")


class EmailService:
    _SENTINEL = object()

    def __init__(self, *, smtp_config: SMTPConfig | None | object = _SENTINEL):
        # 中文注释:
        # - smtp_config 支持依赖注入，方便单测与不同环境切换。
        # - 若调用方显式传 None，则视为禁用邮件（只记录日志）。
        if smtp_config is self._SENTINEL:
            smtp_config = SMTPConfig.from_env()
        self.smtp_config: SMTPConfig | None = smtp_config  # type: ignore[assignment]

        # Path to templates: backend/app/core/templates
        templates_dir = Path(__file__).resolve().parent / "templates"
        self._jinja = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def is_configured(self) -> bool:
        return self.smtp_config is not None

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _deliver(self, to_email: str, subject: str, message: str) -> None:
        cfg = self.smtp_config
        assert cfg is not None
        with smtplib.SMTP(cfg.host, cfg.port) as server:
            if cfg.use_starttls:
                server.starttls()
            if cfg.user and cfg.password:
                server.login(cfg.user, cfg.password)
            server.sendmail(cfg.from_email, [to_email], message)

    def send_email(
        self,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        发送邮件（同步，SMTP 失败自动重试 3 次）。

        中文注释:
        - SMTP 未配置时优雅降级：只记录日志，返回 False。
        """
        if not self.smtp_config:
            logger.info("[Email] SMTP not configured, skip: to=%s subject=%s", to_email, subject)
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.smtp_config.from_email
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            self._deliver(to_email, subject, msg.as_string())
            return True
        except Exception as e:
            logger.warning("[SMTP] send failed: to=%s err=%s", to_email, e)
            return False

    def send_template_email(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
    ) -> bool:
        try:
            html = self.render_template(template_name, {"subject": subject, **context})
        except Exception as e:
            logger.warning("[Email] template render failed: %s: %s", template_name, e)
            return False
        return self.send_email(to_email=to_email, subject=subject, html_body=html)
