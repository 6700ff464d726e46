"""
CRM-agnostic error taxonomy

Закрытый набор ошибок, которые бизнес-логика видит от любого адаптера.
Каждая ошибка несет рекомендуемый HTTP статус для транспортного слоя.
"""

from typing import Any, Dict


class CRMError(Exception):
    """Базовая ошибка CRM слоя"""

    code: str = "CRM_ERROR"
    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Сериализация для ответа API"""
        return {
            "error": self.message,
            "code": self.code,
            "status": self.http_status,
        }


class CRMNotSupportedError(CRMError):
    """Адаптер не поддерживает запрошенную возможность (HTTP 501)"""

    code = "CRM_NOT_SUPPORTED"
    http_status = 501

    def __init__(self, provider: str, feature: str):
        super().__init__(f"{provider} does not support {feature}")
        self.provider = provider
        self.feature = feature


class CRMAuthError(CRMError):
    """Ошибка аутентификации / авторизации (HTTP 401)"""

    code = "CRM_AUTH_FAILED"
    http_status = 401


class CRMQueryError(CRMError):
    """Ошибка операции чтения (HTTP 502)"""

    code = "CRM_QUERY_FAILED"
    http_status = 502

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status


class CRMMutationError(CRMError):
    """Ошибка операции записи (HTTP 502)"""

    code = "CRM_MUTATION_FAILED"
    http_status = 502

    def __init__(self, message: str, status: int, object_type: str):
        super().__init__(message)
        self.status = status
        self.object_type = object_type

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["object_type"] = self.object_type
        return data

