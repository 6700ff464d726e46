"""
SOQL helpers для Salesforce адаптера

- Санитизация пользовательского текста перед интерполяцией в SOQL
- Валидация Salesforce ID (15 или 18 символов)
- OrgMapping: где в конкретной org живут домохозяйства

Все места, где пользовательский ввод попадает в строку запроса, проходят
через sanitize_soql() или require_salesforce_id().
"""

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


MAX_SOQL_INPUT_LENGTH = 200

_SF_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]{15}([a-zA-Z0-9]{3})?$")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f]")
_LIKE_WILDCARDS = re.compile(r"[%_]")


class SalesforceValidationError(ValueError):
    """Невалидный ввод, обнаруженный до обращения к Salesforce"""

    code = "VALIDATION_ERROR"


def sanitize_soql(value: Any) -> str:
    """
    Экранирование строки для подстановки в SOQL литерал

    Длина ограничивается до экранирования, чтобы обрезка не оставила
    висящий обратный слэш перед закрывающей кавычкой.
    Порядок важен: сначала обратный слэш, затем кавычки.
    LIKE-шаблоны (% и _) и управляющие символы удаляются.
    """
    if not isinstance(value, str):
        return ""

    value = value[:MAX_SOQL_INPUT_LENGTH]
    value = value.replace("\\", "\\\\")
    value = value.replace("'", "\\'")
    value = _LIKE_WILDCARDS.sub("", value)
    value = _CONTROL_CHARS.sub("", value)
    return value


def is_valid_salesforce_id(value: Any) -> bool:
    """15 или 18 алфавитно-цифровых символов"""
    return isinstance(value, str) and bool(_SF_ID_PATTERN.match(value))


def require_salesforce_id(value: Any, label: str = "ID") -> str:
    """Вернуть ID или выбросить SalesforceValidationError"""
    if not is_valid_salesforce_id(value):
        raise SalesforceValidationError(
            f"Invalid Salesforce {label}: {str(value)[:30]}"
        )
    return value


def soql_id_list(ids) -> str:
    """'id1','id2' для IN (...) с санитизацией каждого значения"""
    return ",".join(f"'{sanitize_soql(i)}'" for i in ids)


class OrgMapping(BaseModel):
    """
    Схема конкретной Salesforce org

    По умолчанию - демо-конфигурация: домохозяйства это Account с Type = 'Household'.
    Если задан record type, он имеет приоритет над фильтром по полю.
    """

    model_config = ConfigDict(frozen=True)

    household_object: str = "Account"
    household_record_type_developer_name: Optional[str] = None
    household_record_type_id: Optional[str] = None
    household_filter_field: Optional[str] = "Type"
    household_filter_value: Optional[str] = "Household"
    contact_household_lookup: str = "AccountId"
    advisor_field: str = "OwnerId"

    def household_filter(self) -> str:
        """WHERE-фрагмент для выбора записей-домохозяйств ("" = все записи объекта)"""
        if self.household_record_type_developer_name:
            return (
                "RecordType.DeveloperName = "
                f"'{sanitize_soql(self.household_record_type_developer_name)}'"
            )

        if self.household_filter_field and self.household_filter_value:
            return (
                f"{self.household_filter_field} = "
                f"'{sanitize_soql(self.household_filter_value)}'"
            )

        return ""

    def household_filter_and(self) -> str:
        household_filter = self.household_filter()
        return f" AND {household_filter}" if household_filter else ""

    def household_filter_where(self) -> str:
        household_filter = self.household_filter()
        return f" WHERE {household_filter}" if household_filter else ""

    def household_type_value(self) -> Optional[str]:
        """Значение Type при создании домохозяйства (только для Type-фильтра)"""
        if self.household_record_type_developer_name:
            return None
        if self.household_filter_field == "Type" and self.household_filter_value:
            return self.household_filter_value
        return None

    def advisor_select(self) -> str:
        """Поле советника для SELECT (OwnerId -> Owner.Name)"""
        if self.advisor_field == "OwnerId":
            return "Owner.Name"
        return self.advisor_field

    def list_households(self, fields: str, limit: int, offset: int = 0) -> str:
        offset_clause = f" OFFSET {int(offset)}" if offset else ""
        return (
            f"SELECT {fields} FROM {self.household_object}"
            f"{self.household_filter_where()} ORDER BY CreatedDate DESC "
            f"LIMIT {int(limit)}{offset_clause}"
        )

    def search_households(self, fields: str, name_query: str, limit: int, offset: int = 0) -> str:
        """
        Поиск домохозяйств по имени

        name_query должен быть уже санитизирован вызывающим кодом.
        """
        base_filter = self.household_filter()
        name_clause = f"Name LIKE '%{name_query}%'"
        where = f"WHERE {base_filter} AND {name_clause}" if base_filter else f"WHERE {name_clause}"
        offset_clause = f" OFFSET {int(offset)}" if offset else ""
        return (
            f"SELECT {fields} FROM {self.household_object} {where} "
            f"ORDER BY CreatedDate DESC LIMIT {int(limit)}{offset_clause}"
        )

    def new_household_fields(self, name: str, description: str) -> Dict[str, Any]:
        """Поля для создания домохозяйства"""
        fields: Dict[str, Any] = {"Name": name, "Description": description}

        type_value = self.household_type_value()
        if type_value:
            fields["Type"] = type_value

        if self.household_record_type_id:
            fields["RecordTypeId"] = self.household_record_type_id

        return fields
