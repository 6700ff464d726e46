"""
Unit tests for CRM Factory
"""

import threading

import pytest

from crm_integrations.src.adapters.salesforce import SalesforceAdapter
from crm_integrations.src.adapters.sf_client import SalesforceContext
from crm_integrations.src.base import BaseCRMAdapter
from crm_integrations.src.factory import (
    CRMFactory,
    CRMProvider,
    configure_process_logging,
    create_default_factory,
    default_factory,
    get_crm_adapter,
    reset_crm_adapter,
)


class TestCRMFactory:
    """Tests for CRM adapter registry"""

    @pytest.fixture
    def factory(self, settings):
        return create_default_factory(settings)

    def test_available_providers(self, factory):
        assert factory.get_available_providers() == [CRMProvider.SALESFORCE]

    def test_provider_enum_values(self):
        assert CRMProvider.SALESFORCE.value == "salesforce"

    def test_get_adapter(self, factory):
        adapter = factory.get_adapter()

        assert isinstance(adapter, SalesforceAdapter)
        assert adapter.get_crm_name() == "Salesforce"

    def test_adapter_is_cached(self, factory):
        assert factory.get_adapter() is factory.get_adapter()

    def test_reset_creates_new_instance(self, factory):
        first = factory.get_adapter()
        factory.reset()

        assert factory.get_adapter() is not first
        assert factory.get_available_providers() == [CRMProvider.SALESFORCE]

    @pytest.mark.parametrize("value", ["salesforce", "SalesForce", " SALESFORCE ", CRMProvider.SALESFORCE])
    def test_provider_case_insensitive(self, factory, value):
        assert factory.parse_provider(value) is CRMProvider.SALESFORCE

    def test_unknown_provider_fails_at_init(self, factory):
        with pytest.raises(ValueError) as exc_info:
            factory.init("hubspot")

        assert str(exc_info.value) == "Unknown CRM provider: 'hubspot'. Supported: ['salesforce']"

    def test_unknown_provider_from_settings(self, settings):
        factory = create_default_factory(settings.model_copy(update={"crm_provider": "dynamics"}))

        with pytest.raises(ValueError, match="Unknown CRM provider: 'dynamics'"):
            factory.get_adapter()

    def test_register_rejects_non_adapter(self, factory):
        with pytest.raises(ValueError, match="must inherit BaseCRMAdapter"):
            factory.register(CRMProvider.SALESFORCE, dict)

    def test_concurrent_first_access_constructs_once(self, settings, mocker):
        factory = create_default_factory(settings)
        created = mocker.spy(SalesforceAdapter, "from_settings")
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(factory.get_adapter())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert created.call_count == 1
        assert all(result is results[0] for result in results)

    def test_custom_registration(self, settings, fake_adapter):
        factory = CRMFactory(settings)
        factory.register(CRMProvider.SALESFORCE, type(fake_adapter))

        assert isinstance(factory.init(), type(fake_adapter))


@pytest.mark.asyncio
class TestCRMContext:
    """Tests for provider-specific context building"""

    async def test_context_from_client_credentials(self, settings, mocker):
        factory = create_default_factory(settings)
        resolve = mocker.patch(
            "crm_integrations.src.factory.SalesforceTokenProvider.resolve",
            new=mocker.AsyncMock(
                return_value=SalesforceContext(instance_url="https://x", access_token="t")
            ),
        )

        ctx = await factory.get_context("sealed-connection")

        assert isinstance(ctx, SalesforceContext)
        assert resolve.call_args.args == ("sealed-connection",)

    async def test_context_without_builder(self, settings, fake_adapter):
        factory = CRMFactory(settings)
        factory.register(CRMProvider.SALESFORCE, type(fake_adapter))
        factory.init()

        with pytest.raises(ValueError, match="No context builder"):
            await factory.get_context()


class TestDefaultFactory:
    """Tests for module-level helpers"""

    def test_logging_configured_from_settings(self, settings, mocker):
        configure = mocker.patch("crm_integrations.src.factory.configure_logging")

        configure_process_logging(settings.model_copy(update={"log_level": "DEBUG", "log_format": "console"}))

        configure.assert_called_once_with("DEBUG", "console")

    def test_get_and_reset(self):
        reset_crm_adapter()
        adapter = get_crm_adapter()

        assert isinstance(adapter, BaseCRMAdapter)
        assert default_factory.get_adapter() is adapter

        reset_crm_adapter()
        assert get_crm_adapter() is not adapter
        reset_crm_adapter()
