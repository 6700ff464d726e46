"""
Базовый абстрактный класс для CRM адаптеров (порт)

Вся бизнес-логика (домохозяйства, задачи, compliance-проверки, дашборды)
зависит только от этого контракта, а не от языка запросов конкретной CRM.

Обязательные операции либо выполняются, либо выбрасывают ошибку из
crm_integrations.src.errors. Опциональные операции вынесены в отдельный
интерфейс OptionalCRMCapabilities.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Sequence

from shared.models.crm import (
    CRMBatchResult,
    CRMCapabilities,
    CRMContact,
    CRMContactInput,
    CRMFinancialAccountInput,
    CRMHousehold,
    CRMHouseholdInput,
    CRMRecord,
    CRMTask,
    CRMTaskInput,
    FinancialAccountsCreateResult,
    FinancialAccountsQueryResult,
    HouseholdDetail,
    HouseholdSearchResult,
    TaskQueryResult,
)

from .errors import CRMNotSupportedError


@dataclass(frozen=True)
class CRMContext:
    """
    Контекст одного вызова

    Каждый провайдер наследует свой строго типизированный контекст
    (например, SalesforceContext с access_token), фабрика возвращает
    контекст нужного типа.
    """

    instance_url: str

    provider_id: ClassVar[str] = ""


class BaseCRMAdapter(ABC):
    """
    Абстрактный базовый класс для всех CRM адаптеров

    Каждая CRM должна реализовать этот интерфейс для унификации работы
    """

    provider_id: ClassVar[str] = ""
    provider_name: ClassVar[str] = ""

    @classmethod
    def from_settings(cls, settings: Any) -> "BaseCRMAdapter":
        """Создание адаптера из настроек процесса (используется фабрикой)"""
        return cls()

    @abstractmethod
    def capabilities(self) -> CRMCapabilities:
        """Какие опциональные возможности поддерживает адаптер"""
        pass

    # ============================================
    # КОНТАКТЫ
    # ============================================

    @abstractmethod
    async def search_contacts(
        self,
        ctx: CRMContext,
        query: str,
        limit: int = 10
    ) -> List[CRMContact]:
        """
        Поиск контактов по имени, email или названию домохозяйства

        Args:
            ctx: Контекст вызова
            query: Строка поиска (пользовательский ввод)
            limit: Максимум результатов

        Returns:
            Список контактов
        """
        pass

    @abstractmethod
    async def create_contacts(
        self,
        ctx: CRMContext,
        contacts: Sequence[CRMContactInput]
    ) -> CRMBatchResult:
        """
        Пакетное создание контактов (не транзакционно)

        Returns:
            CRMBatchResult, где len(records) + len(errors) == len(contacts)
        """
        pass

    # ============================================
    # ДОМОХОЗЯЙСТВА
    # ============================================

    @abstractmethod
    async def search_households(
        self,
        ctx: CRMContext,
        query: str,
        limit: int,
        offset: int
    ) -> HouseholdSearchResult:
        """
        Поиск домохозяйств по имени с пагинацией

        Returns:
            HouseholdSearchResult; has_more=True если есть следующая страница
        """
        pass

    @abstractmethod
    async def get_household(self, ctx: CRMContext, household_id: str) -> Optional[CRMHousehold]:
        """Одно домохозяйство без контактов и задач (None если не найдено)"""
        pass

    @abstractmethod
    async def get_household_detail(self, ctx: CRMContext, household_id: str) -> HouseholdDetail:
        """
        Домохозяйство + его контакты + его задачи

        Returns:
            HouseholdDetail (household=None если не найдено)
        """
        pass

    @abstractmethod
    async def create_household(self, ctx: CRMContext, data: CRMHouseholdInput) -> CRMRecord:
        """Создание домохозяйства"""
        pass

    @abstractmethod
    async def update_household(
        self,
        ctx: CRMContext,
        household_id: str,
        fields: Dict[str, Any]
    ) -> CRMRecord:
        """Частичное обновление домохозяйства"""
        pass

    @abstractmethod
    async def find_household_by_name(self, ctx: CRMContext, name: str) -> Optional[CRMRecord]:
        """Точный поиск по имени (самое новое совпадение или None)"""
        pass

    # ============================================
    # ЗАДАЧИ
    # ============================================

    @abstractmethod
    async def query_tasks(self, ctx: CRMContext, limit: int, offset: int) -> TaskQueryResult:
        """
        Лента задач и домохозяйств для дашборда

        Обе коллекции пагинируются независимо.
        """
        pass

    @abstractmethod
    async def create_task(self, ctx: CRMContext, data: CRMTaskInput) -> CRMRecord:
        """Создание задачи"""
        pass

    @abstractmethod
    async def create_tasks_batch(
        self,
        ctx: CRMContext,
        tasks: Sequence[CRMTaskInput]
    ) -> CRMBatchResult:
        """Пакетное создание задач (частичный успех допустим)"""
        pass

    @abstractmethod
    async def complete_task(self, ctx: CRMContext, task_id: str) -> CRMRecord:
        """Перевод задачи в статус Completed"""
        pass

    @abstractmethod
    async def query_workflow_tasks(
        self,
        ctx: CRMContext,
        household_id: Optional[str] = None,
        active_only: bool = True,
        limit: int = 100
    ) -> List[CRMTask]:
        """
        Задачи workflow (тема начинается с префикса workflow)

        Args:
            household_id: Только для одного домохозяйства (None = все)
            active_only: Только незавершенные
            limit: Максимум результатов
        """
        pass

    # ============================================
    # ВСПОМОГАТЕЛЬНЫЕ МЕТОДЫ
    # ============================================

    def get_crm_name(self) -> str:
        """Человекочитаемое название CRM"""
        return self.provider_name or self.__class__.__name__.replace("Adapter", "")


class OptionalCRMCapabilities(ABC):
    """
    Опциональные возможности CRM

    Адаптер либо реализует интерфейс целиком, либо не наследует его вовсе.
    "Модуль не установлен в org" - это не ошибка, а флаг в результате
    (fsc_available=False или None). Любой другой сбой - ошибка таксономии.
    """

    @abstractmethod
    async def create_contact_relationship(
        self,
        ctx: CRMContext,
        contact_id: str,
        related_contact_id: str,
        role: str
    ) -> Optional[CRMRecord]:
        """
        Связь между двумя контактами (супруг, ребенок, ...)

        Returns:
            CRMRecord или None если модуль связей не установлен
        """
        pass

    @abstractmethod
    async def create_financial_accounts(
        self,
        ctx: CRMContext,
        accounts: Sequence[CRMFinancialAccountInput]
    ) -> FinancialAccountsCreateResult:
        """Создание финансовых счетов (fsc_available=False если модуль не установлен)"""
        pass

    @abstractmethod
    async def query_financial_accounts(
        self,
        ctx: CRMContext,
        household_ids: Optional[Sequence[str]] = None
    ) -> FinancialAccountsQueryResult:
        """Финансовые счета + AUM (fsc_available=False если модуль не установлен)"""
        pass


_OPTIONAL_FEATURES = {
    "financial_accounts": ("create_financial_accounts", "query_financial_accounts"),
    "contact_relationships": ("create_contact_relationship",),
}


def supports_optional(adapter: BaseCRMAdapter, feature: str) -> bool:
    """
    Проверка опциональной возможности один раз, по декларации

    Args:
        adapter: Адаптер
        feature: "financial_accounts" или "contact_relationships"
    """
    if feature not in _OPTIONAL_FEATURES:
        raise ValueError(f"Unknown optional feature: '{feature}'")

    if not isinstance(adapter, OptionalCRMCapabilities):
        return False

    return bool(getattr(adapter.capabilities(), feature))


def require_optional(adapter: BaseCRMAdapter, feature: str) -> OptionalCRMCapabilities:
    """
    Адаптер как OptionalCRMCapabilities или CRMNotSupportedError

    Raises:
        CRMNotSupportedError: Адаптер не заявляет возможность
    """
    if not supports_optional(adapter, feature):
        raise CRMNotSupportedError(adapter.get_crm_name(), feature.replace("_", " "))
    return adapter  # type: ignore[return-value]
