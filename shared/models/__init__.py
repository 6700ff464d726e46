"""
Shared data models - канонические модели CRM слоя
"""

from .crm import (
    CRMRecord,
    CRMContact,
    CRMHousehold,
    CRMTask,
    CRMFinancialAccount,
    CRMContactInput,
    CRMHouseholdInput,
    CRMTaskInput,
    CRMFinancialAccountInput,
    CRMBatchResult,
    CRMCapabilities,
    CRMFinancialAccountRecord,
    HouseholdSearchResult,
    HouseholdDetail,
    TaskQueryResult,
    FinancialAccountsCreateResult,
    FinancialAccountsSummary,
    FinancialAccountsQueryResult,
)

__all__ = [
    "CRMRecord",
    "CRMContact",
    "CRMHousehold",
    "CRMTask",
    "CRMFinancialAccount",
    "CRMContactInput",
    "CRMHouseholdInput",
    "CRMTaskInput",
    "CRMFinancialAccountInput",
    "CRMBatchResult",
    "CRMCapabilities",
    "CRMFinancialAccountRecord",
    "HouseholdSearchResult",
    "HouseholdDetail",
    "TaskQueryResult",
    "FinancialAccountsCreateResult",
    "FinancialAccountsSummary",
    "FinancialAccountsQueryResult",
]
