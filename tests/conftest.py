"""
Pytest configuration and fixtures
"""

import os
import sys
import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

# Set test environment variables
os.environ.setdefault("ENCRYPTION_MASTER_KEY", "test-encryption-key-for-testing")
os.environ.setdefault("CRM_PROVIDER", "salesforce")

from crm_integrations.src.adapters.sf_client import SalesforceContext  # noqa: E402
from crm_integrations.src.config import Settings  # noqa: E402

INSTANCE_URL = "https://example.my.salesforce.com"


@pytest.fixture
def sf_ctx():
    """Salesforce call context"""
    return SalesforceContext(instance_url=INSTANCE_URL, access_token="test-access-token")


@pytest.fixture
def settings():
    """Settings with client_credentials configured (no .env lookup)"""
    return Settings(
        _env_file=None,
        crm_provider="salesforce",
        salesforce_client_id="test-client-id",
        salesforce_client_secret="test-client-secret",
        salesforce_instance_url=INSTANCE_URL,
        salesforce_oauth_client_id="test-oauth-client-id",
        salesforce_oauth_client_secret="test-oauth-client-secret",
        encryption_master_key="test-master-key-for-testing-only",
    )


@pytest.fixture
def make_http():
    """
    httpx.AsyncClient backed by a handler

    Usage:
        http = make_http(lambda request: httpx.Response(200, json={...}))
    """
    import httpx

    def factory(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


# ============================================
# FAKE ADAPTERS
# ============================================

from crm_integrations.src.base import BaseCRMAdapter, OptionalCRMCapabilities  # noqa: E402
from shared.models.crm import (  # noqa: E402
    CRMBatchResult,
    CRMCapabilities,
    CRMRecord,
    FinancialAccountsCreateResult,
    FinancialAccountsQueryResult,
    HouseholdDetail,
    HouseholdSearchResult,
    TaskQueryResult,
)


class FakeCRMAdapter(BaseCRMAdapter):
    """In-memory adapter with only the required operations"""

    provider_id = "fake"
    provider_name = "Fake CRM"

    def capabilities(self):
        return CRMCapabilities()

    async def search_contacts(self, ctx, query, limit=10):
        return []

    async def create_contacts(self, ctx, contacts):
        return CRMBatchResult()

    async def search_households(self, ctx, query, limit, offset):
        return HouseholdSearchResult()

    async def get_household(self, ctx, household_id):
        return None

    async def get_household_detail(self, ctx, household_id):
        return HouseholdDetail()

    async def create_household(self, ctx, data):
        return CRMRecord(id="h1", url="fake://h1")

    async def update_household(self, ctx, household_id, fields):
        return CRMRecord(id=household_id, url=f"fake://{household_id}")

    async def find_household_by_name(self, ctx, name):
        return None

    async def query_tasks(self, ctx, limit, offset):
        return TaskQueryResult()

    async def create_task(self, ctx, data):
        return CRMRecord(id="t1", url="fake://t1")

    async def create_tasks_batch(self, ctx, tasks):
        return CRMBatchResult()

    async def complete_task(self, ctx, task_id):
        return CRMRecord(id=task_id, url=f"fake://{task_id}")

    async def query_workflow_tasks(self, ctx, household_id=None, active_only=True, limit=100):
        return []


class FakeFSCAdapter(FakeCRMAdapter, OptionalCRMCapabilities):
    """Fake adapter declaring the optional financial features"""

    def __init__(self, financial_result=None):
        self.financial_result = financial_result or FinancialAccountsQueryResult()

    def capabilities(self):
        return CRMCapabilities(financial_accounts=True, contact_relationships=True)

    async def create_contact_relationship(self, ctx, contact_id, related_contact_id, role):
        return None

    async def create_financial_accounts(self, ctx, accounts):
        return FinancialAccountsCreateResult(fsc_available=self.financial_result.fsc_available)

    async def query_financial_accounts(self, ctx, household_ids=None):
        return self.financial_result


@pytest.fixture
def fake_adapter():
    return FakeCRMAdapter()


@pytest.fixture
def fake_fsc_adapter():
    """Set .financial_result to control query_financial_accounts()"""
    return FakeFSCAdapter()
