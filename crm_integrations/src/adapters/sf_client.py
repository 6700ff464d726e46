"""
Salesforce REST client

Документация API: https://developer.salesforce.com/docs/atlas.en-us.api_rest.meta/api_rest/

Особенности:
- Bearer токен, URL инстанса берется из контекста вызова
- Ошибки приходят в трех разных формах:
    Query:  [{"message": "...", "errorCode": "..."}]
    DML:    [{"message": "...", "statusCode": "...", "fields": [...]}]
    OAuth:  {"error": "...", "error_description": "..."}
- 429 / 503 и сетевые ошибки повторяются с экспоненциальной задержкой
- Composite API: до 25 подзапросов за один HTTP запрос
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, ClassVar, Dict, List, Optional, Sequence

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..base import CRMContext
from .soql import SalesforceValidationError, require_salesforce_id
from shared.models.crm import CRMBatchResult, CRMContactInput, CRMRecord, CRMTaskInput

logger = structlog.get_logger(__name__)

DEFAULT_API_VERSION = "v59.0"
DEFAULT_TIMEOUT = 30.0

MAX_ATTEMPTS = 3
RETRY_BASE_SECONDS = 0.5
RETRYABLE_STATUSES = (429, 503)

COMPOSITE_MAX_SUBREQUESTS = 25


@dataclass(frozen=True)
class SalesforceContext(CRMContext):
    """Контекст вызова Salesforce: токен + URL инстанса"""

    access_token: str = field(default="", repr=False)

    provider_id: ClassVar[str] = "salesforce"


# ============================================
# ОШИБКИ ПРОВАЙДЕРА
# ============================================


class SalesforceError(Exception):
    """Базовая ошибка Salesforce API"""

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.message = message
        self.status = status


class SalesforceQueryError(SalesforceError):
    """SOQL запрос завершился ошибкой"""

    code = "SF_QUERY_FAILED"


class SalesforceMutationError(SalesforceError):
    """Создание / обновление записи завершилось ошибкой"""

    code = "SF_MUTATION_FAILED"

    def __init__(self, message: str, status: int, object_type: str):
        super().__init__(message, status)
        self.object_type = object_type


class _TransientStatusError(Exception):
    """Ответ со статусом, который стоит повторить"""

    def __init__(self, response: httpx.Response):
        super().__init__(f"Salesforce returned {response.status_code}")
        self.response = response


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, _TransientStatusError):
        return True
    # Таймаут не повторяем: он и так занял весь бюджет запроса
    return isinstance(exc, httpx.TransportError) and not isinstance(exc, httpx.TimeoutException)


def extract_error(payload: Any, fallback: str) -> str:
    """Текст ошибки из любой из трех форм ответа Salesforce"""
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        message = payload[0].get("message")
        if message:
            error_code = payload[0].get("errorCode") or payload[0].get("statusCode")
            if error_code and error_code not in message:
                return f"{error_code}: {message}"
            return message

    if isinstance(payload, dict):
        for key in ("message", "error_description", "error"):
            if isinstance(payload.get(key), str):
                return payload[key]

    return fallback


def json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def task_fields(data: CRMTaskInput, default_status: str) -> Dict[str, Any]:
    """Поля Salesforce Task из канонического входа"""
    fields: Dict[str, Any] = {
        "Subject": data.subject,
        "WhatId": data.household_id,
        "Status": data.status or default_status,
        "Priority": data.priority or "Normal",
        "Description": data.description
        or f"Recorded by Min at {datetime.now(timezone.utc).isoformat()}",
    }
    if data.contact_id:
        fields["WhoId"] = data.contact_id
    if data.due_date:
        fields["ActivityDate"] = data.due_date
    return fields


class SalesforceClient:
    """
    Примитивы Salesforce REST API для одного контекста вызова

    Args:
        ctx: SalesforceContext (токен + URL инстанса)
        http_client: Общий httpx.AsyncClient адаптера
        api_version: Версия REST API
        retry_wait: Стратегия ожидания между повторами (tenacity)
    """

    def __init__(
        self,
        ctx: SalesforceContext,
        http_client: httpx.AsyncClient,
        api_version: str = DEFAULT_API_VERSION,
        retry_wait: Optional[Callable] = None,
    ):
        self.ctx = ctx
        self.http = http_client
        self.api_version = api_version
        self.retry_wait = retry_wait or wait_exponential(
            multiplier=RETRY_BASE_SECONDS, min=RETRY_BASE_SECONDS, max=4
        )

    @property
    def base_url(self) -> str:
        return f"{self.ctx.instance_url.rstrip('/')}/services/data/{self.api_version}"

    def record_url(self, record_id: str) -> str:
        return f"{self.ctx.instance_url.rstrip('/')}/{record_id}"

    def _headers(self, allow_duplicates: bool = False) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.ctx.access_token}",
            "Content-Type": "application/json",
        }
        if allow_duplicates:
            headers["Sforce-Duplicate-Rule-Header"] = "allowSave=true"
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        error: Callable[[str, int], SalesforceError],
        **kwargs
    ) -> httpx.Response:
        """
        HTTP запрос с повторами

        Args:
            error: Фабрика ошибки провайдера для таймаута / сетевого сбоя
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(MAX_ATTEMPTS),
                wait=self.retry_wait,
                retry=retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    response = await self.http.request(method, url, **kwargs)
                    if response.status_code in RETRYABLE_STATUSES:
                        raise _TransientStatusError(response)
            return response

        except _TransientStatusError as e:
            # Повторы исчерпаны - отдаем последний ответ как есть
            return e.response
        except httpx.TimeoutException:
            logger.error("salesforce_timeout", method=method, url=url.split("?")[0])
            raise error(f"Salesforce request timed out: {url.split('?')[0]}", 504)
        except httpx.TransportError as e:
            logger.error("salesforce_network_error", method=method, error=str(e))
            raise error(f"Salesforce request failed: {e}", 503)

    # ============================================
    # CRUD
    # ============================================

    async def query(self, soql: str) -> List[Dict[str, Any]]:
        """
        Выполнение SOQL запроса

        Пользовательский ввод в soql уже должен пройти sanitize_soql().
        """
        response = await self._send(
            "GET",
            f"{self.base_url}/query",
            SalesforceQueryError,
            params={"q": soql},
            headers=self._headers(),
        )
        payload = json_or_none(response)

        if response.is_error:
            message = extract_error(payload, "Query failed")
            logger.warning(
                "salesforce_query_failed",
                status_code=response.status_code,
                error=message,
            )
            raise SalesforceQueryError(message, response.status_code)

        if not isinstance(payload, dict):
            return []
        return payload.get("records") or []

    async def create(
        self,
        object_type: str,
        fields: Dict[str, Any],
        allow_duplicates: bool = False
    ) -> CRMRecord:
        """Создание записи"""

        def error(message: str, status: int) -> SalesforceError:
            return SalesforceMutationError(message, status, object_type)

        response = await self._send(
            "POST",
            f"{self.base_url}/sobjects/{object_type}",
            error,
            json={k: v for k, v in fields.items() if v is not None},
            headers=self._headers(allow_duplicates),
        )
        payload = json_or_none(response)

        if response.is_error:
            message = extract_error(payload, f"Failed to create {object_type}")
            logger.warning(
                "salesforce_create_failed",
                object_type=object_type,
                status_code=response.status_code,
                error=message,
            )
            raise SalesforceMutationError(message, response.status_code, object_type)

        record_id = str((payload or {}).get("id", ""))
        return CRMRecord(id=record_id, url=self.record_url(record_id))

    async def update(
        self,
        object_type: str,
        record_id: str,
        fields: Dict[str, Any]
    ) -> CRMRecord:
        """Обновление записи по ID (ID валидируется до запроса)"""
        require_salesforce_id(record_id, f"{object_type} ID")

        def error(message: str, status: int) -> SalesforceError:
            return SalesforceMutationError(message, status, object_type)

        response = await self._send(
            "PATCH",
            f"{self.base_url}/sobjects/{object_type}/{record_id}",
            error,
            json=fields,
            headers=self._headers(),
        )

        if response.is_error:
            message = extract_error(json_or_none(response), f"Failed to update {object_type}")
            logger.warning(
                "salesforce_update_failed",
                object_type=object_type,
                status_code=response.status_code,
                error=message,
            )
            raise SalesforceMutationError(message, response.status_code, object_type)

        return CRMRecord(id=record_id, url=self.record_url(record_id))

    # ============================================
    # ЗАДАЧИ
    # ============================================

    @staticmethod
    def _validate_task(data: CRMTaskInput) -> None:
        require_salesforce_id(data.household_id, "household ID")
        if data.contact_id:
            require_salesforce_id(data.contact_id, "contact ID")

    async def create_task(self, data: CRMTaskInput, default_status: str = "Completed") -> CRMRecord:
        """Создание одной задачи"""
        self._validate_task(data)
        return await self.create("Task", task_fields(data, default_status))

    async def create_tasks_batch(
        self,
        tasks: Sequence[CRMTaskInput],
        default_status: str = "Completed"
    ) -> CRMBatchResult:
        """
        Пакетное создание задач через Composite API

        Все входы валидируются заранее: невалидный вход становится строкой
        в errors и не отправляется. Пачки по 25 подзапросов;
        если Composite недоступен - откат на параллельные одиночные создания.
        """
        records: List[CRMRecord] = []
        errors: List[str] = []
        valid: List[CRMTaskInput] = []

        for data in tasks:
            try:
                self._validate_task(data)
            except SalesforceValidationError as e:
                errors.append(str(e))
                continue
            valid.append(data)

        if errors:
            logger.warning("salesforce_task_batch_invalid_input", rejected=len(errors))

        if not valid:
            return CRMBatchResult(errors=errors)

        if len(valid) == 1:
            result = await self._create_tasks_individually(valid, default_status)
            return CRMBatchResult(records=result.records, errors=errors + result.errors)

        for start in range(0, len(valid), COMPOSITE_MAX_SUBREQUESTS):
            chunk = valid[start:start + COMPOSITE_MAX_SUBREQUESTS]
            result = await self._create_tasks_composite(chunk, default_status)
            records.extend(result.records)
            errors.extend(result.errors)

        return CRMBatchResult(records=records, errors=errors)

    async def _create_tasks_composite(
        self,
        tasks: Sequence[CRMTaskInput],
        default_status: str
    ) -> CRMBatchResult:
        subrequests = [
            {
                "method": "POST",
                "url": f"/services/data/{self.api_version}/sobjects/Task",
                "referenceId": f"task_{i}",
                "body": task_fields(data, default_status),
            }
            for i, data in enumerate(tasks)
        ]

        def error(message: str, status: int) -> SalesforceError:
            return SalesforceMutationError(message, status, "Task")

        try:
            response = await self._send(
                "POST",
                f"{self.base_url}/composite",
                error,
                json={"allOrNone": False, "compositeRequest": subrequests},
                headers=self._headers(),
            )
        except SalesforceError as e:
            logger.warning("salesforce_composite_unavailable", error=e.message)
            return await self._create_tasks_individually(tasks, default_status)

        if response.is_error:
            logger.warning(
                "salesforce_composite_unavailable",
                status_code=response.status_code,
            )
            return await self._create_tasks_individually(tasks, default_status)

        payload = json_or_none(response) or {}
        by_reference = {
            sub.get("referenceId"): sub
            for sub in payload.get("compositeResponse") or []
            if isinstance(sub, dict)
        }

        records: List[CRMRecord] = []
        errors: List[str] = []

        for i in range(len(tasks)):
            sub = by_reference.get(f"task_{i}")
            if sub is None:
                errors.append(f"No composite response for task_{i}")
                continue

            body = sub.get("body")
            status = sub.get("httpStatusCode", 0)
            if 200 <= status < 300 and isinstance(body, dict) and body.get("id"):
                records.append(CRMRecord(id=body["id"], url=self.record_url(body["id"])))
            else:
                errors.append(extract_error(body, "Create failed"))

        return CRMBatchResult(records=records, errors=errors)

    async def _create_tasks_individually(
        self,
        tasks: Sequence[CRMTaskInput],
        default_status: str
    ) -> CRMBatchResult:
        results = await asyncio.gather(
            *(self.create("Task", task_fields(data, default_status)) for data in tasks),
            return_exceptions=True,
        )
        return _collect_batch(results, "Create failed")

    # ============================================
    # КОНТАКТЫ
    # ============================================

    async def create_contacts_batch(
        self,
        contacts: Sequence[CRMContactInput],
        household_lookup: str = "AccountId"
    ) -> CRMBatchResult:
        """
        Параллельное создание контактов

        Контакты не зависят друг от друга, только от домохозяйства.
        """
        if not contacts:
            return CRMBatchResult()

        results = await asyncio.gather(
            *(
                self.create(
                    "Contact",
                    {
                        "FirstName": c.first_name,
                        "LastName": c.last_name,
                        "Email": c.email,
                        "Phone": c.phone,
                        household_lookup: c.household_id,
                    },
                    allow_duplicates=True,
                )
                for c in contacts
            ),
            return_exceptions=True,
        )
        return _collect_batch(results, "Contact create failed")


def _collect_batch(results: Sequence[Any], fallback: str) -> CRMBatchResult:
    """
    Один исход на каждый вход

    Ошибки Salesforce становятся строками в errors, все остальное пробрасывается.
    """
    records: List[CRMRecord] = []
    errors: List[str] = []

    for result in results:
        if isinstance(result, SalesforceError):
            errors.append(result.message or fallback)
        elif isinstance(result, BaseException):
            raise result
        else:
            records.append(result)

    return CRMBatchResult(records=records, errors=errors)
