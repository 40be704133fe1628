from __future__ import annotations

from typing import Any


class PaymentPipelineError(RuntimeError):
    """Erro base do fluxo checkout -> contrato.

    Carrega o status HTTP e o corpo JSON devolvido pelas rotas.
    """

    status = 500
    public_message = "Erro interno do servidor"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: str | None = None,
        status: int | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.details = details
        if status is not None:
            self.status = status
        self.extra = dict(extra or {})

    def payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ValidationError(PaymentPipelineError):
    status = 400
    public_message = "Dados inválidos"


class NotFoundError(PaymentPipelineError):
    status = 404
    public_message = "Registro não encontrado"


class InvalidMethodError(PaymentPipelineError):
    status = 400
    public_message = "Método de pagamento inválido"


class GatewayError(PaymentPipelineError):
    status = 400
    public_message = "Erro no processamento do pagamento"


class SecurityError(PaymentPipelineError):
    status = 403
    public_message = "Acesso negado"


class MaterializationError(PaymentPipelineError):
    public_message = "Falha ao criar cliente/contrato"


class RenewalAttemptError(PaymentPipelineError):
    public_message = "Falha na renovação automática"


class NotificationError(PaymentPipelineError):
    public_message = "Falha ao enviar notificação"
