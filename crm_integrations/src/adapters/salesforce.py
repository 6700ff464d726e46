"""
Salesforce CRM Adapter

Реализация порта BaseCRMAdapter поверх Salesforce REST API.

Особенности:
- Домохозяйства - Account с фильтром из OrgMapping (по умолчанию Type = 'Household')
- Финансовые счета и связи контактов - Financial Services Cloud (FinServ__*).
  FSC установлен не в каждой org: отсутствие модуля - флаг в результате, не ошибка
- Пагинация без COUNT: запрашиваем limit + 1 записей
- Ошибки Salesforce переводятся в CRMQueryError / CRMMutationError / CRMAuthError
"""

import asyncio
import math
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import httpx
import structlog

from ..base import BaseCRMAdapter, CRMContext, OptionalCRMCapabilities
from ..config import Settings
from ..data_source import summarize_accounts
from ..errors import CRMAuthError, CRMError, CRMMutationError, CRMQueryError
from .sf_client import (
    DEFAULT_API_VERSION,
    DEFAULT_TIMEOUT,
    SalesforceClient,
    SalesforceContext,
    SalesforceError,
    SalesforceMutationError,
)
from .soql import OrgMapping, SalesforceValidationError, sanitize_soql, soql_id_list
from shared.models.crm import (
    CRMBatchResult,
    CRMCapabilities,
    CRMContact,
    CRMContactInput,
    CRMFinancialAccount,
    CRMFinancialAccountInput,
    CRMFinancialAccountRecord,
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

logger = structlog.get_logger(__name__)

WORKFLOW_PREFIX = "WORKFLOW —"

FINANCIAL_ACCOUNT_OBJECT = "FinServ__FinancialAccount__c"
CONTACT_RELATION_OBJECT = "FinServ__ContactContactRelation__c"
FINANCIAL_ACCOUNTS_QUERY_LIMIT = 500

# Признаки "объект / поле не существует в этой org" (эвристика, не контракт Salesforce)
FEATURE_ABSENT_MARKERS = ("INVALID_TYPE", "NOT_FOUND", "sObject type")

# Тип счета из визарда -> (FinServ__FinancialAccountType__c, FinServ__TaxStatus__c)
ACCOUNT_TYPE_MAP: Dict[str, Tuple[str, str]] = {
    "IRA": ("Individual Retirement", "Tax-Deferred"),
    "Roth IRA": ("Roth IRA", "Tax-Free"),
    "Individual": ("Brokerage", "Taxable"),
    "Individual TOD": ("Brokerage", "Taxable"),
    "SEP IRA": ("SEP IRA", "Tax-Deferred"),
    "SIMPLE IRA": ("SIMPLE IRA", "Tax-Deferred"),
    "401(k)": ("401k", "Tax-Deferred"),
    "529 Plan": ("529 Education", "Tax-Free"),
    "JTWROS": ("Joint Brokerage", "Taxable"),
    "JTWROS TOD": ("Joint Brokerage", "Taxable"),
    "Joint TIC": ("Joint Brokerage", "Taxable"),
    "Community Property": ("Joint Brokerage", "Taxable"),
}
DEFAULT_ACCOUNT_TYPE = ("Brokerage", "Taxable")

CONTACT_FIELDS = "Id, FirstName, LastName, Email, Phone, AccountId, Account.Name, CreatedDate"
TASK_FIELDS = (
    "Id, Subject, Status, Priority, Description, CreatedDate, ActivityDate, "
    "WhoId, WhatId, What.Id, What.Name"
)
FINANCIAL_ACCOUNT_FIELDS = (
    "Id, Name, FinServ__FinancialAccountType__c, FinServ__TaxStatus__c, "
    "FinServ__Balance__c, FinServ__Household__c, FinServ__Household__r.Name, "
    "FinServ__PrimaryOwner__c, FinServ__PrimaryOwner__r.Name, "
    "FinServ__Status__c, FinServ__OpenDate__c"
)


# ============================================
# ОШИБКИ
# ============================================


def is_feature_absent(error: Exception) -> bool:
    """Ошибка означает "модуль не установлен в org"?"""
    message = getattr(error, "message", None) or str(error)
    return any(marker in message for marker in FEATURE_ABSENT_MARKERS)


def to_crm_error(error: SalesforceError) -> CRMError:
    """Ошибка Salesforce -> ошибка таксономии (сообщение и статус сохраняются)"""
    if error.status == 401:
        return CRMAuthError(error.message)
    if isinstance(error, SalesforceMutationError):
        return CRMMutationError(error.message, error.status, error.object_type)
    return CRMQueryError(error.message, error.status)


@contextmanager
def translate_errors(object_type: str = "") -> Iterator[None]:
    """
    Граница адаптера: ошибки Salesforce наружу не выходят

    Невалидный ID от вызывающего кода становится CRMMutationError со статусом 400.
    """
    try:
        yield
    except SalesforceValidationError as e:
        raise CRMMutationError(str(e), 400, object_type) from e
    except SalesforceError as e:
        raise to_crm_error(e) from e


# ============================================
# МАППИНГ (чистые функции)
# ============================================


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _nullable(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _nested(raw: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = raw.get(key)
    return value if isinstance(value, dict) else {}


def _to_float(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(number) else number


def map_contact(raw: Dict[str, Any], household_lookup: str = "AccountId") -> CRMContact:
    return CRMContact(
        id=_text(raw.get("Id")),
        first_name=_text(raw.get("FirstName")),
        last_name=_text(raw.get("LastName")),
        email=_text(raw.get("Email")),
        phone=_text(raw.get("Phone")),
        household_id=_nullable(raw.get(household_lookup)),
        household_name=_nullable(_nested(raw, "Account").get("Name")),
        created_at=_nullable(raw.get("CreatedDate")),
        raw=raw,
    )


def map_household(raw: Dict[str, Any], advisor_field: str = "OwnerId") -> CRMHousehold:
    if advisor_field == "OwnerId":
        advisor = raw.get("Owner.Name") or _nested(raw, "Owner").get("Name")
    else:
        advisor = raw.get(advisor_field)

    return CRMHousehold(
        id=_text(raw.get("Id")),
        name=_text(raw.get("Name")),
        description=_text(raw.get("Description")),
        created_at=_nullable(raw.get("CreatedDate")),
        advisor_name=_nullable(advisor),
        raw=raw,
    )


def map_task(raw: Dict[str, Any]) -> CRMTask:
    what = _nested(raw, "What")
    return CRMTask(
        id=_text(raw.get("Id")),
        subject=_text(raw.get("Subject")),
        status=_text(raw.get("Status")),
        priority=_text(raw.get("Priority")),
        description=_text(raw.get("Description")),
        created_at=_nullable(raw.get("CreatedDate")),
        due_date=_nullable(raw.get("ActivityDate")),
        household_id=_nullable(what.get("Id")) or _nullable(raw.get("WhatId")),
        household_name=_nullable(what.get("Name")),
        contact_id=_nullable(raw.get("WhoId")),
        raw=raw,
    )


def map_financial_account(raw: Dict[str, Any]) -> CRMFinancialAccount:
    return CRMFinancialAccount(
        id=_text(raw.get("Id")),
        name=_text(raw.get("Name")),
        account_type=_text(raw.get("FinServ__FinancialAccountType__c")),
        tax_status=_text(raw.get("FinServ__TaxStatus__c")),
        balance=_to_float(raw.get("FinServ__Balance__c")),
        household_id=_nullable(raw.get("FinServ__Household__c")),
        household_name=_nullable(_nested(raw, "FinServ__Household__r").get("Name")),
        owner_name=_nullable(_nested(raw, "FinServ__PrimaryOwner__r").get("Name")),
        status=_text(raw.get("FinServ__Status__c")),
        open_date=_nullable(raw.get("FinServ__OpenDate__c")),
        raw=raw,
    )


def paginate(records: List[Dict[str, Any]], limit: int) -> Tuple[List[Dict[str, Any]], bool]:
    """
    N+1 пагинация: из limit + 1 полученных записей вернуть limit и флаг has_more
    """
    has_more = len(records) > limit
    return (records[:limit] if has_more else records), has_more


async def gather_reads(*reads: Any) -> List[Any]:
    """
    Параллельные чтения: при первой ошибке остальные отменяются и дожидаются
    """
    tasks = [asyncio.ensure_future(read) for read in reads]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


# ============================================
# АДАПТЕР
# ============================================


class SalesforceAdapter(BaseCRMAdapter, OptionalCRMCapabilities):
    """
    Адаптер для Salesforce (включая Financial Services Cloud)

    Args:
        org_mapping: Схема org (где живут домохозяйства)
        http_client: httpx.AsyncClient (по умолчанию создается свой)
        api_version: Версия REST API
        timeout: Таймаут запроса в секундах
        retry_wait: Стратегия ожидания между повторами (tenacity)
    """

    provider_id = "salesforce"
    provider_name = "Salesforce"

    def __init__(
        self,
        org_mapping: Optional[OrgMapping] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        api_version: str = DEFAULT_API_VERSION,
        timeout: float = DEFAULT_TIMEOUT,
        retry_wait: Optional[Callable] = None,
    ):
        self.org = org_mapping or OrgMapping()
        self.api_version = api_version
        self.retry_wait = retry_wait
        self.http = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(
            "salesforce_adapter_initialized",
            household_object=self.org.household_object,
            api_version=api_version,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SalesforceAdapter":
        return cls(
            api_version=settings.salesforce_api_version,
            timeout=settings.salesforce_timeout,
        )

    async def aclose(self) -> None:
        """Закрыть HTTP клиент"""
        await self.http.aclose()

    def capabilities(self) -> CRMCapabilities:
        return CRMCapabilities(
            financial_accounts=True,  # FSC, с деградацией если не установлен
            contact_relationships=True,  # FSC
            batch_operations=True,  # Composite API
            workflows=True,
            audit_log=True,
        )

    def _client(self, ctx: CRMContext) -> SalesforceClient:
        if not isinstance(ctx, SalesforceContext):
            raise CRMAuthError(
                f"Salesforce adapter requires SalesforceContext, got {type(ctx).__name__}"
            )
        return SalesforceClient(ctx, self.http, self.api_version, self.retry_wait)

    def _household_fields(self) -> str:
        return f"Id, Name, Description, CreatedDate, {self.org.advisor_select()}"

    def _map_household(self, raw: Dict[str, Any]) -> CRMHousehold:
        return map_household(raw, self.org.advisor_field)

    # ============================================
    # КОНТАКТЫ
    # ============================================

    async def search_contacts(
        self,
        ctx: CRMContext,
        query: str,
        limit: int = 10
    ) -> List[CRMContact]:
        client = self._client(ctx)
        q = sanitize_soql(query)
        soql = (
            f"SELECT {CONTACT_FIELDS} FROM Contact "
            f"WHERE FirstName LIKE '%{q}%' OR LastName LIKE '%{q}%' "
            f"OR Email LIKE '%{q}%' OR Account.Name LIKE '%{q}%' "
            f"ORDER BY LastName ASC LIMIT {int(limit)}"
        )

        with translate_errors():
            records = await client.query(soql)

        return [map_contact(r) for r in records]

    async def create_contacts(
        self,
        ctx: CRMContext,
        contacts: Sequence[CRMContactInput]
    ) -> CRMBatchResult:
        client = self._client(ctx)

        with translate_errors():
            result = await client.create_contacts_batch(
                contacts, self.org.contact_household_lookup
            )

        logger.info(
            "salesforce_contacts_created",
            created=len(result.records),
            failed=len(result.errors),
        )
        return result

    # ============================================
    # ДОМОХОЗЯЙСТВА
    # ============================================

    async def search_households(
        self,
        ctx: CRMContext,
        query: str,
        limit: int,
        offset: int
    ) -> HouseholdSearchResult:
        client = self._client(ctx)
        soql = self.org.search_households(
            self._household_fields(), sanitize_soql(query), limit + 1, offset
        )

        with translate_errors():
            records = await client.query(soql)

        page, has_more = paginate(records, limit)
        return HouseholdSearchResult(
            households=[self._map_household(r) for r in page],
            has_more=has_more,
        )

    async def get_household(self, ctx: CRMContext, household_id: str) -> Optional[CRMHousehold]:
        client = self._client(ctx)
        soql = (
            f"SELECT {self._household_fields()} FROM {self.org.household_object} "
            f"WHERE Id = '{sanitize_soql(household_id)}' LIMIT 1"
        )

        with translate_errors():
            records = await client.query(soql)

        return self._map_household(records[0]) if records else None

    async def get_household_detail(self, ctx: CRMContext, household_id: str) -> HouseholdDetail:
        client = self._client(ctx)
        safe_id = sanitize_soql(household_id)
        lookup = self.org.contact_household_lookup

        household_soql = (
            f"SELECT {self._household_fields()} FROM {self.org.household_object} "
            f"WHERE Id = '{safe_id}' LIMIT 1"
        )
        contacts_soql = (
            f"SELECT Id, FirstName, LastName, Email, Phone, {lookup}, CreatedDate "
            f"FROM Contact WHERE {lookup} = '{safe_id}' ORDER BY CreatedDate ASC"
        )
        tasks_soql = (
            f"SELECT {TASK_FIELDS} FROM Task WHERE WhatId = '{safe_id}' "
            f"ORDER BY CreatedDate ASC"
        )

        # Три независимых чтения по одному ID - параллельно
        with translate_errors():
            household_records, contact_records, task_records = await gather_reads(
                client.query(household_soql),
                client.query(contacts_soql),
                client.query(tasks_soql),
            )

        return HouseholdDetail(
            household=self._map_household(household_records[0]) if household_records else None,
            contacts=[map_contact(r, lookup) for r in contact_records],
            tasks=[map_task(r) for r in task_records],
        )

    async def create_household(self, ctx: CRMContext, data: CRMHouseholdInput) -> CRMRecord:
        client = self._client(ctx)
        fields = self.org.new_household_fields(data.name, data.description)

        with translate_errors():
            record = await client.create(
                self.org.household_object, fields, allow_duplicates=True
            )

        logger.info("salesforce_household_created", household_id=record.id)
        return record

    async def update_household(
        self,
        ctx: CRMContext,
        household_id: str,
        fields: Dict[str, Any]
    ) -> CRMRecord:
        client = self._client(ctx)

        with translate_errors(self.org.household_object):
            return await client.update(self.org.household_object, household_id, fields)

    async def find_household_by_name(self, ctx: CRMContext, name: str) -> Optional[CRMRecord]:
        client = self._client(ctx)
        soql = (
            f"SELECT Id, Name FROM {self.org.household_object} "
            f"WHERE Name = '{sanitize_soql(name)}'{self.org.household_filter_and()} "
            f"ORDER BY CreatedDate DESC LIMIT 1"
        )

        with translate_errors():
            records = await client.query(soql)

        if not records:
            return None

        record_id = _text(records[0].get("Id"))
        return CRMRecord(id=record_id, url=client.record_url(record_id))

    # ============================================
    # ЗАДАЧИ
    # ============================================

    async def query_tasks(self, ctx: CRMContext, limit: int, offset: int) -> TaskQueryResult:
        client = self._client(ctx)
        fetch_limit = limit + 1
        offset_clause = f" OFFSET {int(offset)}" if offset else ""

        tasks_soql = (
            f"SELECT {TASK_FIELDS} FROM Task "
            f"WHERE What.Type = '{sanitize_soql(self.org.household_object)}' "
            f"ORDER BY CreatedDate DESC LIMIT {int(fetch_limit)}{offset_clause}"
        )
        households_soql = self.org.list_households(
            self._household_fields(), fetch_limit, offset
        )

        with translate_errors():
            task_records, household_records = await gather_reads(
                client.query(tasks_soql),
                client.query(households_soql),
            )

        tasks_page, tasks_has_more = paginate(task_records, limit)
        households_page, households_has_more = paginate(household_records, limit)

        return TaskQueryResult(
            tasks=[map_task(r) for r in tasks_page],
            households=[self._map_household(r) for r in households_page],
            tasks_has_more=tasks_has_more,
            households_has_more=households_has_more,
        )

    async def create_task(self, ctx: CRMContext, data: CRMTaskInput) -> CRMRecord:
        client = self._client(ctx)

        with translate_errors("Task"):
            return await client.create_task(data, default_status="Not Started")

    async def create_tasks_batch(
        self,
        ctx: CRMContext,
        tasks: Sequence[CRMTaskInput]
    ) -> CRMBatchResult:
        client = self._client(ctx)

        with translate_errors("Task"):
            result = await client.create_tasks_batch(tasks, default_status="Completed")

        if result.errors:
            logger.warning(
                "salesforce_task_batch_partial",
                created=len(result.records),
                failed=len(result.errors),
            )
        return result

    async def complete_task(self, ctx: CRMContext, task_id: str) -> CRMRecord:
        client = self._client(ctx)

        with translate_errors("Task"):
            return await client.update("Task", task_id, {"Status": "Completed"})

    async def query_workflow_tasks(
        self,
        ctx: CRMContext,
        household_id: Optional[str] = None,
        active_only: bool = True,
        limit: int = 100
    ) -> List[CRMTask]:
        client = self._client(ctx)

        conditions = [f"Subject LIKE '{WORKFLOW_PREFIX}%'"]
        if household_id:
            conditions.append(f"WhatId = '{sanitize_soql(household_id)}'")
        if active_only:
            conditions.append("Status != 'Completed'")

        soql = (
            f"SELECT {TASK_FIELDS} FROM Task WHERE {' AND '.join(conditions)} "
            f"ORDER BY ActivityDate ASC LIMIT {int(limit)}"
        )

        with translate_errors():
            records = await client.query(soql)

        return [map_task(r) for r in records]

    # ============================================
    # OPTIONAL: СВЯЗИ КОНТАКТОВ (FSC)
    # ============================================

    async def create_contact_relationship(
        self,
        ctx: CRMContext,
        contact_id: str,
        related_contact_id: str,
        role: str
    ) -> Optional[CRMRecord]:
        client = self._client(ctx)

        try:
            return await client.create(
                CONTACT_RELATION_OBJECT,
                {
                    "FinServ__Contact__c": contact_id,
                    "FinServ__RelatedContact__c": related_contact_id,
                    "FinServ__Role__c": role,
                    "FinServ__InverseRole__c": role,
                    "FinServ__AssociationType__c": "Household Member",
                },
            )
        except SalesforceError as e:
            if is_feature_absent(e):
                logger.info("fsc_not_installed", feature="contact_relationships")
                return None
            logger.warning("fsc_error_unmatched", feature="contact_relationships", error=e.message)
            raise to_crm_error(e) from e

    # ============================================
    # OPTIONAL: ФИНАНСОВЫЕ СЧЕТА (FSC)
    # ============================================

    async def create_financial_accounts(
        self,
        ctx: CRMContext,
        accounts: Sequence[CRMFinancialAccountInput]
    ) -> FinancialAccountsCreateResult:
        """
        Создание счетов по одному

        Первый признак отсутствия FSC останавливает обработку (fsc_available=False).
        Любая другая ошибка фиксируется для этого счета, остальные продолжаются.
        """
        client = self._client(ctx)
        created: List[CRMFinancialAccountRecord] = []
        errors: List[str] = []
        open_date = date.today().isoformat()

        for account in accounts:
            fsc_type, tax_status = ACCOUNT_TYPE_MAP.get(account.account_type, DEFAULT_ACCOUNT_TYPE)

            try:
                record = await client.create(
                    FINANCIAL_ACCOUNT_OBJECT,
                    {
                        "Name": f"{account.owner} — {account.account_type}",
                        "FinServ__FinancialAccountType__c": fsc_type,
                        "FinServ__TaxStatus__c": tax_status,
                        "FinServ__Household__c": account.household_id,
                        "FinServ__PrimaryOwner__c": account.primary_contact_id or None,
                        "FinServ__Balance__c": account.amount or None,
                        "FinServ__Status__c": "New",
                        "FinServ__OpenDate__c": open_date,
                    },
                )
            except SalesforceError as e:
                if is_feature_absent(e):
                    logger.info("fsc_not_installed", feature="financial_accounts")
                    return FinancialAccountsCreateResult(
                        accounts=created, errors=errors, fsc_available=False
                    )

                logger.warning(
                    "fsc_error_unmatched",
                    feature="financial_accounts",
                    account_type=account.account_type,
                    error=e.message,
                )
                errors.append(e.message)
                continue

            created.append(
                CRMFinancialAccountRecord(id=record.id, url=record.url, account_type=fsc_type)
            )

        return FinancialAccountsCreateResult(accounts=created, errors=errors, fsc_available=True)

    async def query_financial_accounts(
        self,
        ctx: CRMContext,
        household_ids: Optional[Sequence[str]] = None
    ) -> FinancialAccountsQueryResult:
        client = self._client(ctx)

        soql = f"SELECT {FINANCIAL_ACCOUNT_FIELDS} FROM {FINANCIAL_ACCOUNT_OBJECT}"
        if household_ids:
            soql += f" WHERE FinServ__Household__c IN ({soql_id_list(household_ids)})"
        soql += (
            f" ORDER BY FinServ__Household__r.Name, Name "
            f"LIMIT {FINANCIAL_ACCOUNTS_QUERY_LIMIT}"
        )

        try:
            records = await client.query(soql)
        except SalesforceError as e:
            if is_feature_absent(e):
                logger.info("fsc_not_installed", feature="financial_accounts")
                return FinancialAccountsQueryResult(fsc_available=False)
            logger.warning("fsc_error_unmatched", feature="financial_accounts", error=e.message)
            raise to_crm_error(e) from e

        summary = summarize_accounts(map_financial_account(r) for r in records)
        return FinancialAccountsQueryResult(
            accounts=summary.accounts,
            total_aum=summary.total_aum,
            aum_by_household=summary.aum_by_household,
            fsc_available=True,
        )
