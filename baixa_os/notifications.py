from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr
from enum import Enum
from typing import Any, Protocol, Sequence, Union

from jinja2 import Template

from baixa_os.common.date_utils import aware_now
from baixa_os.gcom.models import ClosureOutcome, OrderId

logger = logging.getLogger(__name__)

DISPLAY_FORMAT = "%d/%m/%Y %H:%M:%S"
SMTP_TIMEOUT_SECONDS = 30


class NotificationKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SUMMARY = "summary"


@dataclass(frozen=True)
class SuccessEvent:
    order_id: OrderId
    started_at: datetime
    ended_at: datetime
    kind: NotificationKind = field(default=NotificationKind.SUCCESS, init=False)


@dataclass(frozen=True)
class ErrorEvent:
    order_id: OrderId | None
    message: str
    started_at: datetime
    kind: NotificationKind = field(default=NotificationKind.ERROR, init=False)


@dataclass(frozen=True)
class SummaryEvent:
    outcomes: tuple[ClosureOutcome, ...]
    started_at: datetime
    ended_at: datetime
    kind: NotificationKind = field(default=NotificationKind.SUMMARY, init=False)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.succeeded_count


NotificationEvent = Union[SuccessEvent, ErrorEvent, SummaryEvent]


class Notifier(Protocol):
    def notify(self, event: NotificationEvent) -> None: ...


class LoggingNotifier:
    """Default sink: record the event in the process log only."""

    def notify(self, event: NotificationEvent) -> None:
        if isinstance(event, SummaryEvent):
            logger.info(
                "run summary: %d succeeded, %d failed",
                event.succeeded_count,
                event.failed_count,
                extra={"kind": event.kind.value},
            )
        elif isinstance(event, ErrorEvent):
            logger.error("run stopped (order %s): %s", event.order_id or "N/A", event.message)
        else:
            logger.info("order %s closed", event.order_id)


SUBJECT_TEMPLATES = {
    NotificationKind.SUCCESS: "✅ Baixa finalizada com sucesso - OS {{ order_id }}",
    NotificationKind.ERROR: "❌ Erro na baixa - Bot parado - OS {{ order_id or 'N/A' }}",
    NotificationKind.SUMMARY: "📊 Resumo da execução - {{ succeeded }} sucessos, {{ failed }} erros",
}

BODY_TEMPLATES = {
    NotificationKind.SUCCESS: """\
Baixa finalizada com sucesso

Número da OS: {{ order_id }}
Início: {{ started_at }}
Fim: {{ ended_at }}
Status: SUCESSO

Enviado automaticamente pela automação de baixa GCOM em {{ sent_at }}.
""",
    NotificationKind.ERROR: """\
Erro na execução da baixa - bot parado

Número da OS: {{ order_id or 'N/A' }}
Início da execução: {{ started_at }}
Hora do erro: {{ sent_at }}

Detalhes do erro:
{{ message or 'Erro desconhecido' }}

Ação necessária: o bot foi interrompido e requer intervenção manual.
Verifique os logs e reinicie o processo quando o problema for resolvido.
""",
    NotificationKind.SUMMARY: """\
Resumo da execução

Total de OS processadas: {{ outcomes|length }}
Sucessos: {{ succeeded }}
Erros: {{ failed }}
Início: {{ started_at }}
Fim: {{ ended_at }}
{% if outcomes %}
Detalhes:
{% for outcome in outcomes -%}
- {{ outcome.order_id }}: {{ 'SUCESSO' if outcome.succeeded else 'ERRO' }} - {{ outcome.messages|join(', ') }}
{% endfor %}{% endif %}
Enviado automaticamente pela automação de baixa GCOM em {{ sent_at }}.
""",
}


def _format_datetime(value: datetime | None) -> str:
    return value.strftime(DISPLAY_FORMAT) if value else ""


def build_context(event: NotificationEvent, *, sent_at: datetime | None = None) -> dict[str, Any]:
    context: dict[str, Any] = {
        "kind": event.kind.value,
        "sent_at": _format_datetime(sent_at or aware_now()),
        "started_at": _format_datetime(event.started_at),
    }
    if isinstance(event, SuccessEvent):
        context.update(order_id=event.order_id, ended_at=_format_datetime(event.ended_at))
    elif isinstance(event, ErrorEvent):
        context.update(order_id=event.order_id, message=event.message)
    else:
        context.update(
            outcomes=list(event.outcomes),
            succeeded=event.succeeded_count,
            failed=event.failed_count,
            ended_at=_format_datetime(event.ended_at),
        )
    return context


def render(event: NotificationEvent, *, sent_at: datetime | None = None) -> tuple[str, str]:
    context = build_context(event, sent_at=sent_at)
    subject = Template(SUBJECT_TEMPLATES[event.kind]).render(**context)
    body = Template(BODY_TEMPLATES[event.kind]).render(**context)
    return subject, body


@dataclass
class SmtpConfig:
    host: str
    port: int
    sender: str
    sender_name: str | None
    username: str | None
    password: str | None
    use_tls: bool


class EmailNotifier:
    """Send each event as a plain-text e-mail (first recipient To, rest Cc)."""

    def __init__(self, smtp: SmtpConfig, recipients: Sequence[str], *, enabled: bool = True) -> None:
        self.smtp = smtp
        self.recipients = list(recipients)
        self.enabled = enabled

    def notify(self, event: NotificationEvent) -> None:
        if not self.enabled:
            logger.info("email notifications disabled; skipping %s notification", event.kind.value)
            return
        if not self.recipients:
            logger.warning("no recipients configured for email notifications")
            return
        subject, body = render(event)
        if self._send(subject, body):
            logger.info(
                "%s notification sent",
                event.kind.value,
                extra={"recipients": len(self.recipients)},
            )

    def build_message(self, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((self.smtp.sender_name or "", self.smtp.sender))
        message["To"] = self.recipients[0]
        if len(self.recipients) > 1:
            message["Cc"] = ", ".join(self.recipients[1:])
        message.set_content(body)
        return message

    def _send(self, subject: str, body: str) -> bool:
        message = self.build_message(subject, body)
        try:
            with smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=SMTP_TIMEOUT_SECONDS) as client:
                if self.smtp.use_tls:
                    client.starttls()
                if self.smtp.username and self.smtp.password:
                    client.login(self.smtp.username, self.smtp.password)
                client.send_message(message, to_addrs=self.recipients)
            return True
        except (smtplib.SMTPException, OSError):
            logger.exception("failed to send notification email", extra={"subject": subject})
            return False


def build_notifier(config: Any) -> Notifier:
    if not config.email_enabled:
        return LoggingNotifier()
    smtp = SmtpConfig(
        host=config.smtp_host,
        port=config.smtp_port,
        sender=config.email_from,
        sender_name=config.email_from_name or None,
        username=config.smtp_username or None,
        password=config.smtp_password or None,
        use_tls=config.smtp_use_tls,
    )
    return EmailNotifier(smtp, config.email_recipients)


__all__ = [
    "EmailNotifier",
    "ErrorEvent",
    "LoggingNotifier",
    "NotificationEvent",
    "NotificationKind",
    "Notifier",
    "SmtpConfig",
    "SuccessEvent",
    "SummaryEvent",
    "build_notifier",
    "render",
]
