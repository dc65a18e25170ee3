"""
Taxonomia de erros do checkout.

Cada erro carrega status HTTP, código de motivo (reason) e mensagem para o usuário;
o handler em app/main.py transforma em JSON. EXPIRED não é erro: é um status.
"""


class CheckoutError(Exception):
    status_code = 400
    reason = "CheckoutError"
    message = "Erro no checkout."
    retryable = False

    def __init__(self, message: str | None = None, reason: str | None = None):
        if message is not None:
            self.message = message
        if reason is not None:
            self.reason = reason
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "reason": self.reason, "status_code": self.status_code}
        if self.retryable:
            body["retryable"] = True
        return body


# ---------- Validação (corrigido pelo chamador, nunca repetido) ----------
class ValidationFailed(CheckoutError):
    reason = "ValidationFailed"
    message = "Dados inválidos."

    def __init__(self, errors: dict[str, str], message: str | None = None):
        self.errors = dict(errors)
        super().__init__(message or self._summary(errors))

    @staticmethod
    def _summary(errors: dict[str, str]) -> str:
        if len(errors) == 1:
            return next(iter(errors.values()))
        return "Dados inválidos: " + ", ".join(sorted(errors))

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["errors"] = self.errors
        return body


class InvalidAmount(CheckoutError):
    reason = "InvalidAmount"
    message = "O valor deve ser maior que zero."


class InvalidInstallments(CheckoutError):
    reason = "InvalidInstallments"
    message = "Número de parcelas inválido."


# ---------- Regra de negócio (mostrado como veio, sem retry) ----------
class CouponRejected(CheckoutError):
    reason = "CouponRejected"

    def __init__(self, reason: str, message: str):
        self.coupon_reason = reason
        super().__init__(message, reason="CouponRejected")

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["couponReason"] = self.coupon_reason
        return body


class AmountMismatch(CheckoutError):
    status_code = 409
    reason = "AmountMismatch"
    message = "O processador retornou um valor diferente do calculado. Pagamento não criado."


class InvalidTransition(CheckoutError):
    status_code = 409
    reason = "InvalidTransition"
    message = "Transição de status não permitida."


class ProcessorRejected(CheckoutError):
    """Recusa definitiva do processador (4xx): token de cartão inválido, credencial errada."""

    status_code = 402
    reason = "ProcessorRejected"
    message = "O processador de pagamento recusou a requisição."


class NotFound(CheckoutError):
    status_code = 404
    reason = "NotFound"
    message = "Registro não encontrado."


# ---------- Infraestrutura (transitório) ----------
class ProcessorUnavailable(CheckoutError):
    status_code = 503
    reason = "ProcessorUnavailable"
    message = "Processador de pagamento indisponível. Tente novamente em instantes."
    retryable = True


# ---------- Autenticação ----------
class AuthenticationError(CheckoutError):
    status_code = 401
    reason = "AuthenticationError"
    message = "Autenticação necessária."
