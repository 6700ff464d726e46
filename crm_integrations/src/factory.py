"""
Factory для создания CRM адаптеров

Один активный CRM на деплой: провайдер выбирается настройкой CRM_PROVIDER,
адаптер создается один раз и переиспользуется всеми вызовами.
"""

import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Type, Union

import structlog

from .adapters.salesforce import SalesforceAdapter
from .auth import SalesforceTokenProvider
from .base import BaseCRMAdapter, CRMContext
from .config import Settings, get_settings
from shared.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


class CRMProvider(str, Enum):
    """Поддерживаемые CRM"""
    SALESFORCE = "salesforce"


ContextBuilder = Callable[..., Any]


class CRMFactory:
    """
    Реестр CRM адаптеров

    Usage:
        factory = CRMFactory()
        factory.register(CRMProvider.SALESFORCE, SalesforceAdapter)
        adapter = factory.get_adapter()
        ctx = await factory.get_context(stored_connection)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._adapters: Dict[CRMProvider, Type[BaseCRMAdapter]] = {}
        self._context_builders: Dict[CRMProvider, ContextBuilder] = {}
        self._provider: Optional[CRMProvider] = None
        self._instance: Optional[BaseCRMAdapter] = None
        self._lock = threading.Lock()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def register(
        self,
        provider: CRMProvider,
        adapter_class: Type[BaseCRMAdapter],
        context_builder: Optional[ContextBuilder] = None
    ) -> None:
        """
        Регистрация адаптера

        Args:
            provider: Провайдер
            adapter_class: Класс адаптера (наследник BaseCRMAdapter)
            context_builder: async callable, строящий контекст вызова
        """
        if not issubclass(adapter_class, BaseCRMAdapter):
            raise ValueError(f"{adapter_class} must inherit BaseCRMAdapter")

        self._adapters[provider] = adapter_class
        if context_builder is not None:
            self._context_builders[provider] = context_builder

    def get_available_providers(self) -> list[CRMProvider]:
        """Список зарегистрированных провайдеров"""
        return list(self._adapters.keys())

    def parse_provider(self, value: Union[str, CRMProvider]) -> CRMProvider:
        """
        Строка конфигурации -> CRMProvider (без учета регистра)

        Raises:
            ValueError: Провайдер неизвестен или не зарегистрирован
        """
        normalized = value.value if isinstance(value, CRMProvider) else str(value).strip().lower()

        for provider in self._adapters:
            if provider.value == normalized:
                return provider

        supported = [p.value for p in self._adapters]
        raise ValueError(f"Unknown CRM provider: '{value}'. Supported: {supported}")

    def init(self, provider: Union[str, CRMProvider, None] = None) -> BaseCRMAdapter:
        """
        Явная инициализация при старте процесса

        Неизвестный провайдер - ошибка сразу, а не при первом запросе.
        """
        with self._lock:
            return self._create(provider)

    def get_adapter(self) -> BaseCRMAdapter:
        """Активный адаптер (создается при первом обращении)"""
        instance = self._instance
        if instance is not None:
            return instance

        with self._lock:
            if self._instance is not None:
                return self._instance
            return self._create(None)

    def reset(self) -> None:
        """Сбросить закэшированный адаптер (регистрации сохраняются)"""
        with self._lock:
            self._instance = None
            self._provider = None

    async def get_context(self, *args: Any, **kwargs: Any) -> CRMContext:
        """
        Контекст вызова для активного провайдера

        Аргументы передаются построителю контекста провайдера как есть
        (для Salesforce - зашифрованное сохраненное подключение).
        """
        adapter = self.get_adapter()
        provider = self._provider or self.parse_provider(adapter.provider_id)

        builder = self._context_builders.get(provider)
        if builder is None:
            raise ValueError(f"No context builder registered for '{provider.value}'")

        return await builder(*args, **kwargs)

    def _create(self, provider: Union[str, CRMProvider, None]) -> BaseCRMAdapter:
        resolved = self.parse_provider(provider or self.settings.crm_provider)
        adapter = self._adapters[resolved].from_settings(self.settings)

        self._provider = resolved
        self._instance = adapter

        logger.info("crm_adapter_created", provider=resolved.value, crm=adapter.get_crm_name())
        return adapter


# ============================================
# ФАБРИКА ПО УМОЛЧАНИЮ
# ============================================


def _salesforce_context_builder(factory: CRMFactory) -> ContextBuilder:
    token_provider: Optional[SalesforceTokenProvider] = None

    async def build(stored_connection: Optional[str] = None) -> CRMContext:
        nonlocal token_provider
        if token_provider is None:
            token_provider = SalesforceTokenProvider(factory.settings)
        return await token_provider.resolve(stored_connection)

    return build


def create_default_factory(settings: Optional[Settings] = None) -> CRMFactory:
    """Фабрика со всеми встроенными адаптерами"""
    factory = CRMFactory(settings)
    factory.register(
        CRMProvider.SALESFORCE,
        SalesforceAdapter,
        _salesforce_context_builder(factory),
    )
    return factory


def configure_process_logging(settings: Optional[Settings] = None) -> None:
    """Настройка structlog из LOG_LEVEL и LOG_FORMAT"""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_format)


# Настройка логирования
configure_process_logging()

default_factory = create_default_factory()


def get_crm_adapter() -> BaseCRMAdapter:
    return default_factory.get_adapter()


async def get_crm_context(*args: Any, **kwargs: Any) -> CRMContext:
    return await default_factory.get_context(*args, **kwargs)


def reset_crm_adapter() -> None:
    default_factory.reset()
