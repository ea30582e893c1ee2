"""
Exceptions customizadas do motor de campanhas.

Taxonomia:
- RuleValidationError: arvore de regras malformada (todos os erros de uma vez)
- NotFoundError: campanha/segmento/cliente inexistente
- VendorError: falha de envio de uma mensagem (nunca derruba a campanha)
- DatabaseError/PersistenceError: falha de armazenamento
- DispatchLoopError: erro inesperado no loop de disparo (campanha -> FAILED)
"""
from typing import Optional


class CRMException(Exception):
    """Base exception para todos os erros do sistema."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(CRMException):
    """Erro de banco de dados (Supabase)."""
    pass


# Nome usado na reconciliacao de recibos
PersistenceError = DatabaseError


class ValidationError(CRMException):
    """Erro de validacao de dados de entrada."""
    pass


class RuleValidationError(ValidationError):
    """Arvore de regras de segmentacao invalida."""

    def __init__(self, errors: list):
        self.errors = list(errors)
        super().__init__(
            "Regras de segmentacao invalidas",
            details={"errors": [str(e) for e in self.errors]},
        )


class NotFoundError(CRMException):
    """Recurso nao encontrado."""

    def __init__(
        self,
        resource: str,
        identifier: Optional[str] = None
    ):
        self.resource = resource
        self.identifier = identifier
        message = f"{resource} nao encontrado"
        details = {}
        if identifier:
            details["id"] = identifier
        super().__init__(message, details)


class VendorError(CRMException):
    """Falha de envio no vendor de mensagens (rejeicao, timeout, HTTP)."""
    pass


class InvalidRuleTreeError(CRMException):
    """
    Arvore nao validada (ou com no desconhecido) chegou ao resolver.

    Erro de contrato: nunca deve virar "audiencia vazia".
    """
    pass


class CampaignStateError(CRMException):
    """Transicao de status de campanha nao permitida."""

    def __init__(
        self,
        campaign_id: str,
        current: str,
        target: str,
        message: Optional[str] = None,
    ):
        self.campaign_id = campaign_id
        self.current = current
        self.target = target
        super().__init__(
            message or f"Transicao invalida {current} -> {target}",
            details={"campaign_id": campaign_id},
        )


class CampaignAlreadyRunningError(CampaignStateError):
    """Campanha ja foi iniciada (ou esta sendo iniciada por outro processo)."""

    def __init__(self, campaign_id: str, current: str = "RUNNING"):
        super().__init__(
            campaign_id,
            current,
            "RUNNING",
            message="Campanha ja esta em execucao",
        )


class DispatchLoopError(CRMException):
    """Erro inesperado fora do tratamento por mensagem no disparo."""

    def __init__(self, campaign_id: str, original_error: Exception):
        super().__init__(
            f"Falha no loop de disparo: {original_error}",
            details={"campaign_id": campaign_id},
            original_error=original_error,
        )
        self.campaign_id = campaign_id


class ConfigurationError(CRMException):
    """Erro de configuracao do sistema."""
    pass
