"""
Data Source port - дополнительные источники данных (не CRM)

Кастодиальные агрегаторы и похожие сервисы дополняют CRM финансовыми счетами,
но сами CRM не являются. Контракт только на чтение и без флагов доступности:
если источник сконфигурирован, он считается доступным.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

import structlog

from shared.models.crm import (
    CRMFinancialAccount,
    FinancialAccountsQueryResult,
    FinancialAccountsSummary,
)

from .base import BaseCRMAdapter, CRMContext, supports_optional

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DataSourceContext:
    """Контекст вызова источника данных (формат auth задает сам источник)"""

    auth: Any = None


class DataSourcePort(ABC):
    """Контракт источника финансовых данных"""

    source_id: str = ""
    source_name: str = ""

    @abstractmethod
    async def query_financial_accounts(
        self,
        ctx: DataSourceContext,
        household_ids: Optional[Sequence[str]] = None
    ) -> FinancialAccountsSummary:
        """
        Финансовые счета, опционально только для указанных домохозяйств

        Returns:
            FinancialAccountsSummary (счета + total_aum + aum_by_household)
        """
        pass


def summarize_accounts(accounts: Iterable[CRMFinancialAccount]) -> FinancialAccountsSummary:
    """
    Агрегаты AUM по списку счетов

    Счета без домохозяйства учитываются только в total_aum.
    """
    accounts = list(accounts)
    total_aum = 0.0
    by_household: Dict[str, float] = {}

    for account in accounts:
        total_aum += account.balance
        if account.household_id:
            by_household[account.household_id] = (
                by_household.get(account.household_id, 0.0) + account.balance
            )

    return FinancialAccountsSummary(
        accounts=accounts,
        total_aum=total_aum,
        aum_by_household=by_household,
    )


async def resolve_financial_accounts(
    adapter: BaseCRMAdapter,
    ctx: CRMContext,
    data_source: Optional[DataSourcePort] = None,
    source_ctx: Optional[DataSourceContext] = None,
    household_ids: Optional[Sequence[str]] = None
) -> FinancialAccountsQueryResult:
    """
    Финансовые счета из лучшего доступного места

    1. CRM, если адаптер заявляет financial_accounts и модуль установлен в org
    2. Иначе сконфигурированный источник данных
    3. Иначе пустой результат с fsc_available=False
    """
    if supports_optional(adapter, "financial_accounts"):
        result = await adapter.query_financial_accounts(ctx, household_ids)
        if result.fsc_available:
            return result

    if data_source is not None:
        logger.info(
            "financial_accounts_from_data_source",
            source_id=data_source.source_id,
            crm=adapter.provider_id,
        )
        summary = await data_source.query_financial_accounts(
            source_ctx or DataSourceContext(), household_ids
        )
        return FinancialAccountsQueryResult(
            accounts=summary.accounts,
            total_aum=summary.total_aum,
            aum_by_household=summary.aum_by_household,
            fsc_available=True,
        )

    return FinancialAccountsQueryResult(fsc_available=False)
