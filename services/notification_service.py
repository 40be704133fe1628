from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from email.message import EmailMessage
from html import escape
from typing import Any, Mapping

import requests

from services.date_utils import format_date_br

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


def format_brl(value) -> str:
    """R$ 1.234,56"""
    amount = Decimal(str(value or 0))
    text = f"{amount:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {text}"


@dataclass
class PaymentReminderData:
    client_name: str
    client_email: str
    amount: Decimal
    due_date: datetime
    plan_name: str
    pet_name: str
    days_until_due: int


@dataclass
class PaymentOverdueData:
    client_name: str
    client_email: str
    amount: Decimal
    due_date: datetime
    plan_name: str
    pet_name: str
    days_overdue: int


_STYLE = """
body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
.container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
.header {{ background-color: {accent}; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0; }}
.content {{ background-color: #f9fafb; padding: 30px; border-radius: 0 0 8px 8px; }}
.highlight {{ background-color: {tint}; padding: 15px; border-left: 4px solid {accent}; margin: 20px 0; }}
.button {{ display: inline-block; background-color: {accent}; color: white; padding: 12px 30px; text-decoration: none; border-radius: 6px; margin: 20px 0; }}
.footer {{ text-align: center; margin-top: 30px; color: #6B7280; font-size: 14px; }}
"""


def _details(rows: list[tuple[str, str]]) -> str:
    items = "".join(f"<li><strong>{escape(label)}:</strong> {escape(value)}</li>" for label, value in rows)
    return f"<ul>{items}</ul>"


def render_email(*, accent: str, tint: str, title: str, highlight: str, body_html: str) -> str:
    """Casca comum dos e-mails: cabeçalho, destaque, conteúdo e rodapé.

    `title` e `highlight` são escapados aqui; `body_html` já deve vir seguro.
    """
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<style>{_STYLE.format(accent=accent, tint=tint)}</style></head><body>"
        "<div class=\"container\">"
        "<div class=\"header\"><h1>🐾 UNIPET PLAN</h1></div>"
        "<div class=\"content\">"
        f"<h2>{escape(title)}</h2>"
        f"<div class=\"highlight\"><strong>{escape(highlight)}</strong></div>"
        f"{body_html}"
        "</div>"
        "<div class=\"footer\">"
        "<p>UNIPET PLAN - Cuidando da saúde do seu melhor amigo</p>"
        "<p>Este é um email automático, por favor não responda.</p>"
        "</div></div></body></html>"
    )


class NotificationService:
    """E-mails de cobrança. Transporte: SMTP, senão Resend, senão simulado (log).

    Envio nunca levanta exceção para o caller: falha vira `False` + log.
    """

    def __init__(
        self,
        *,
        app_base_url: str,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_pass: str = "",
        smtp_from: str = "",
        resend_api_key: str = "",
        email_from: str = "",
        send_enabled: bool = True,
    ) -> None:
        self.app_base_url = (app_base_url or "").rstrip("/")
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_pass = smtp_pass
        self.smtp_from = smtp_from or smtp_user
        self.resend_api_key = (resend_api_key or "").strip()
        self.email_from = (email_from or "").strip()
        self.send_enabled = send_enabled

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "NotificationService":
        return cls(
            app_base_url=config.get("APP_BASE_URL", ""),
            smtp_host=config.get("SMTP_HOST", ""),
            smtp_port=int(config.get("SMTP_PORT", 587)),
            smtp_user=config.get("SMTP_USER", ""),
            smtp_pass=config.get("SMTP_PASS", ""),
            smtp_from=config.get("SMTP_FROM", ""),
            resend_api_key=config.get("RESEND_API_KEY", ""),
            email_from=config.get("EMAIL_FROM", ""),
            send_enabled=bool(config.get("EMAIL_SEND_ENABLED", True)),
        )

    @property
    def transport(self) -> str | None:
        if not self.send_enabled:
            return None
        if self.smtp_host and self.smtp_user and self.smtp_pass:
            return "smtp"
        if self.resend_api_key and self.email_from:
            return "resend"
        return None

    @property
    def financial_url(self) -> str:
        return f"{self.app_base_url}/cliente/financeiro"

    def send_email(self, to: str, subject: str, html: str, *, client_name: str = "") -> bool:
        transport = self.transport
        if transport is None:
            logger.warning(
                "Envio de e-mail desabilitado ou não configurado. Simulado: para=%s assunto=%s",
                to,
                subject,
            )
            return True
        if transport == "smtp":
            return self._send_smtp(to, subject, html)
        return self._send_resend(to, subject, html)

    def _send_smtp(self, to: str, subject: str, html: str) -> bool:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"UNIPET PLAN <{self.smtp_from}>"
        msg["To"] = to
        msg.set_content("Seu cliente de e-mail não suporta HTML.")
        msg.add_alternative(html, subtype="html")
        try:
            if self.smtp_port == 465:
                smtp_cls = smtplib.SMTP_SSL
            else:
                smtp_cls = smtplib.SMTP
            with smtp_cls(self.smtp_host, self.smtp_port, timeout=20) as smtp:
                if self.smtp_port != 465:
                    smtp.starttls()
                smtp.login(self.smtp_user, self.smtp_pass)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.warning("Falha ao enviar e-mail (SMTP) para %s", to, exc_info=True)
            return False
        logger.info("E-mail enviado (SMTP) para %s: %s", to, subject)
        return True

    def _send_resend(self, to: str, subject: str, html: str) -> bool:
        payload = {"from": self.email_from, "to": [to], "subject": subject, "html": html}
        try:
            r = requests.post(
                RESEND_URL,
                headers={
                    "Authorization": f"Bearer {self.resend_api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=20,
            )
        except requests.RequestException:
            logger.warning("Falha ao enviar e-mail (Resend) para %s", to, exc_info=True)
            return False
        if r.status_code >= 400:
            logger.warning("Falha ao enviar e-mail (Resend): %s %s", r.status_code, r.text)
            return False
        logger.info("E-mail enviado (Resend) para %s: %s", to, subject)
        return True

    def _button(self, label: str) -> str:
        return f"<center><a href=\"{escape(self.financial_url)}\" class=\"button\">{escape(label)}</a></center>"

    def send_payment_reminder(self, data: PaymentReminderData) -> bool:
        body = (
            "<p>Este é um lembrete amigável de que o pagamento do seu plano está próximo do vencimento.</p>"
            "<p><strong>Detalhes do pagamento:</strong></p>"
            + _details(
                [
                    ("Pet", data.pet_name),
                    ("Plano", data.plan_name),
                    ("Valor", format_brl(data.amount)),
                    ("Vencimento", format_date_br(data.due_date)),
                ]
            )
            + self._button("Acessar Área Financeira")
            + "<p>Se você já efetuou o pagamento, por favor desconsidere este e-mail.</p>"
        )
        html = render_email(
            accent="#4F46E5",
            tint="#EEF2FF",
            title=f"Olá, {data.client_name}!",
            highlight=f"⏰ Vencimento em {data.days_until_due} dia(s)",
            body_html=body,
        )
        return self.send_email(
            data.client_email,
            f"⏰ Lembrete: Pagamento UNIPET PLAN vence em {data.days_until_due} dia(s)",
            html,
            client_name=data.client_name,
        )

    def send_payment_overdue(self, data: PaymentOverdueData) -> bool:
        body = (
            "<p>Identificamos que seu pagamento está em atraso.</p>"
            "<p><strong>Detalhes do pagamento:</strong></p>"
            + _details(
                [
                    ("Pet", data.pet_name),
                    ("Plano", data.plan_name),
                    ("Valor", format_brl(data.amount)),
                    ("Vencimento", format_date_br(data.due_date)),
                ]
            )
            + "<p><strong>Importante:</strong> Para evitar a suspensão ou cancelamento do seu plano, "
            "regularize sua situação o quanto antes.</p>"
            "<p>Período de tolerância:</p><ul>"
            "<li>Até 15 dias: Serviço mantido (período de carência)</li>"
            "<li>16 a 60 dias: Serviço suspenso</li>"
            "<li>Acima de 60 dias: Cancelamento automático</li></ul>"
            + self._button("Regularizar Pagamento")
        )
        html = render_email(
            accent="#DC2626",
            tint="#FEE2E2",
            title=f"Atenção, {data.client_name}!",
            highlight=f"⚠️ Pagamento em atraso: {data.days_overdue} dia(s)",
            body_html=body,
        )
        return self.send_email(
            data.client_email,
            f"⚠️ URGENTE: Pagamento UNIPET PLAN em atraso ({data.days_overdue} dia(s))",
            html,
            client_name=data.client_name,
        )

    def send_renewal_success(
        self, client_name: str, client_email: str, amount, plan_name: str, pet_name: str
    ) -> bool:
        body = (
            "<p>Seu plano foi renovado automaticamente e continuará ativo.</p>"
            "<p><strong>Detalhes da renovação:</strong></p>"
            + _details(
                [
                    ("Pet", pet_name),
                    ("Plano", plan_name),
                    ("Valor", format_brl(amount)),
                    ("Data", format_date_br(datetime.utcnow())),
                ]
            )
            + "<p>Você pode visualizar o comprovante de pagamento na sua área financeira.</p>"
        )
        html = render_email(
            accent="#10B981",
            tint="#D1FAE5",
            title=f"Ótimas notícias, {client_name}!",
            highlight="✅ Renovação automática processada com sucesso!",
            body_html=body,
        )
        return self.send_email(
            client_email, "✅ Renovação UNIPET PLAN confirmada com sucesso", html, client_name=client_name
        )

    def send_renewal_failure(
        self, client_name: str, client_email: str, amount, plan_name: str, pet_name: str, reason: str
    ) -> bool:
        body = (
            "<p>Tentamos renovar seu plano automaticamente, mas não foi possível concluir o pagamento.</p>"
            "<p><strong>Detalhes:</strong></p>"
            + _details(
                [
                    ("Pet", pet_name),
                    ("Plano", plan_name),
                    ("Valor", format_brl(amount)),
                    ("Motivo", reason),
                ]
            )
            + "<p><strong>O que fazer agora:</strong></p><ol>"
            "<li>Verifique os dados do seu cartão de crédito</li>"
            "<li>Certifique-se de que há limite disponível</li>"
            "<li>Acesse a área financeira para efetuar o pagamento manualmente</li></ol>"
            + self._button("Efetuar Pagamento")
        )
        html = render_email(
            accent="#F59E0B",
            tint="#FEF3C7",
            title=f"Atenção, {client_name}!",
            highlight="⚠️ Não foi possível processar a renovação automática",
            body_html=body,
        )
        return self.send_email(
            client_email,
            "⚠️ Atenção: Falha na renovação automática UNIPET PLAN",
            html,
            client_name=client_name,
        )
