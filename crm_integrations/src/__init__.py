"""
CRM Integrations Package

Порт (BaseCRMAdapter) и адаптеры для CRM, в которых живут домохозяйства,
контакты, задачи и финансовые счета клиентов.
"""

from .base import (
    BaseCRMAdapter,
    CRMContext,
    OptionalCRMCapabilities,
    require_optional,
    supports_optional,
)
from .errors import (
    CRMAuthError,
    CRMError,
    CRMMutationError,
    CRMNotSupportedError,
    CRMQueryError,
)
from .data_source import DataSourceContext, DataSourcePort, resolve_financial_accounts
from .adapters.sf_client import SalesforceContext
from .adapters.salesforce import SalesforceAdapter
from .factory import (
    CRMFactory,
    CRMProvider,
    default_factory,
    get_crm_adapter,
    get_crm_context,
    reset_crm_adapter,
)

__all__ = [
    "BaseCRMAdapter",
    "CRMContext",
    "OptionalCRMCapabilities",
    "require_optional",
    "supports_optional",
    "CRMError",
    "CRMAuthError",
    "CRMMutationError",
    "CRMNotSupportedError",
    "CRMQueryError",
    "DataSourceContext",
    "DataSourcePort",
    "resolve_financial_accounts",
    "SalesforceContext",
    "SalesforceAdapter",
    "CRMFactory",
    "CRMProvider",
    "default_factory",
    "get_crm_adapter",
    "get_crm_context",
    "reset_crm_adapter",
]
