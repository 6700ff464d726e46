"""
CRM data models - канонические модели, независимые от конкретной CRM

Адаптеры - единственное место, где известны нативные имена полей провайдера.
Все модели неизменяемые (frozen): изменение = вызов create/update метода порта
и получение новой записи.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


class _CanonicalModel(BaseModel):
    """Базовая модель: неизменяемая, без лишних полей"""

    model_config = ConfigDict(frozen=True, extra="forbid")


# ============================================
# READ MODELS
# ============================================


class CRMRecord(_CanonicalModel):
    """Минимальная ссылка на запись, возвращаемая любой мутацией"""

    id: str = Field(..., description="ID записи в CRM")
    url: str = Field(..., description="Ссылка на запись в UI провайдера")


class CRMContact(_CanonicalModel):
    """Модель контакта (член домохозяйства)"""

    id: str = Field(..., description="ID контакта в CRM")
    first_name: str = Field(default="", description="Имя")
    last_name: str = Field(default="", description="Фамилия")
    email: str = Field(default="", description="Email")
    phone: str = Field(default="", description="Телефон")

    household_id: Optional[str] = Field(None, description="ID домохозяйства")
    household_name: Optional[str] = Field(None, description="Название домохозяйства")

    created_at: Optional[str] = Field(None, description="Дата создания (ISO, как вернул провайдер)")

    # Исходная запись провайдера - только для постепенной миграции
    raw: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "0031234567890ABCDE",
                "first_name": "John",
                "last_name": "Doe",
                "email": "john@example.com",
                "phone": "555-1234",
                "household_id": "0011234567890ABCDE",
                "household_name": "Doe Household",
            }
        }
    )


class CRMHousehold(_CanonicalModel):
    """Модель домохозяйства (семья / группа счетов)"""

    id: str = Field(..., description="ID домохозяйства в CRM")
    name: str = Field(default="", description="Название")
    description: str = Field(default="", description="Описание")
    created_at: Optional[str] = None
    advisor_name: Optional[str] = Field(None, description="Ответственный советник")

    raw: Optional[Dict[str, Any]] = None


class CRMTask(_CanonicalModel):
    """Модель задачи"""

    id: str = Field(..., description="ID задачи в CRM")
    subject: str = Field(default="", description="Тема")
    status: str = Field(default="", description="Статус: Not Started, In Progress, Completed")
    priority: str = Field(default="", description="Приоритет: High, Normal, Low")
    description: str = Field(default="")

    created_at: Optional[str] = None
    due_date: Optional[str] = Field(None, description="Срок (YYYY-MM-DD)")

    household_id: Optional[str] = None
    household_name: Optional[str] = None
    contact_id: Optional[str] = None

    raw: Optional[Dict[str, Any]] = None


class CRMFinancialAccount(_CanonicalModel):
    """Модель финансового счета (опциональная возможность CRM)"""

    id: str = Field(..., description="ID счета в CRM")
    name: str = Field(default="")
    account_type: str = Field(default="", description="Тип счета: Roth IRA, Brokerage, ...")
    tax_status: str = Field(default="", description="Налоговый статус: Taxable, Tax-Deferred, Tax-Free")
    balance: float = Field(default=0.0, description="Баланс")

    household_id: Optional[str] = None
    household_name: Optional[str] = None
    owner_name: Optional[str] = None

    status: str = Field(default="")
    open_date: Optional[str] = None

    raw: Optional[Dict[str, Any]] = None


# ============================================
# WRITE MODELS (входные данные для создания)
# ============================================


class CRMContactInput(_CanonicalModel):
    """Данные для создания контакта"""

    first_name: str
    last_name: str
    email: str = ""
    phone: str = ""
    household_id: str = Field(..., description="Контакт всегда создается внутри домохозяйства")


class CRMHouseholdInput(_CanonicalModel):
    """Данные для создания домохозяйства"""

    name: str
    description: str = ""


class CRMTaskInput(_CanonicalModel):
    """Данные для создания задачи"""

    subject: str
    household_id: str
    status: Optional[str] = None
    priority: Optional[str] = None
    description: Optional[str] = None
    contact_id: Optional[str] = None
    due_date: Optional[str] = Field(None, description="YYYY-MM-DD")


class CRMFinancialAccountInput(_CanonicalModel):
    """Данные для создания финансового счета"""

    name: str
    account_type: str = Field(..., description="Тип счета из визарда: IRA, Roth IRA, JTWROS, ...")
    owner: str
    amount: Optional[float] = None
    household_id: str
    primary_contact_id: Optional[str] = None


# ============================================
# BATCH / AGGREGATE MODELS
# ============================================


class CRMBatchResult(_CanonicalModel):
    """
    Результат пакетного создания

    На N входов приходится ровно N исходов: len(records) + len(errors) == N
    """

    records: List[CRMRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class CRMCapabilities(_CanonicalModel):
    """Какие опциональные возможности поддерживает адаптер"""

    financial_accounts: bool = False
    contact_relationships: bool = False
    batch_operations: bool = False
    workflows: bool = False
    audit_log: bool = False


class HouseholdSearchResult(_CanonicalModel):
    households: List[CRMHousehold] = Field(default_factory=list)
    has_more: bool = False


class HouseholdDetail(_CanonicalModel):
    household: Optional[CRMHousehold] = None
    contacts: List[CRMContact] = Field(default_factory=list)
    tasks: List[CRMTask] = Field(default_factory=list)


class TaskQueryResult(_CanonicalModel):
    tasks: List[CRMTask] = Field(default_factory=list)
    households: List[CRMHousehold] = Field(default_factory=list)
    tasks_has_more: bool = False
    households_has_more: bool = False


class CRMFinancialAccountRecord(CRMRecord):
    """Ссылка на созданный финансовый счет + его тип у провайдера"""

    account_type: str = ""


class FinancialAccountsCreateResult(_CanonicalModel):
    """
    Созданные счета + флаг доступности модуля

    errors - сбои отдельных счетов (остальные счета при этом создаются)
    """

    accounts: List[CRMFinancialAccountRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    fsc_available: bool = True


class FinancialAccountsSummary(_CanonicalModel):
    """Счета + агрегаты AUM (форма ответа источника данных)"""

    accounts: List[CRMFinancialAccount] = Field(default_factory=list)
    total_aum: float = 0.0
    aum_by_household: Dict[str, float] = Field(default_factory=dict)


class FinancialAccountsQueryResult(FinancialAccountsSummary):
    """Счета из CRM + флаг доступности модуля (FSC)"""

    fsc_available: bool = True
