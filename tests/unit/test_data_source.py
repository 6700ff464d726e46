"""
Unit tests for the data source port and financial account resolution
"""

import pytest

from crm_integrations.src.data_source import (
    DataSourceContext,
    DataSourcePort,
    resolve_financial_accounts,
    summarize_accounts,
)
from shared.models.crm import (
    CRMFinancialAccount,
    FinancialAccountsQueryResult,
    FinancialAccountsSummary,
)

HOUSEHOLD_ID = "001000000000001AAA"


class FakeCustodian(DataSourcePort):
    """Custodial aggregator returning a fixed set of accounts"""

    source_id = "custodian"
    source_name = "Custodian Feed"

    def __init__(self):
        self.calls = []

    async def query_financial_accounts(self, ctx, household_ids=None):
        self.calls.append((ctx, household_ids))
        return summarize_accounts([
            CRMFinancialAccount(id="ext-1", balance=1000.0, household_id=HOUSEHOLD_ID),
        ])


class TestSummarizeAccounts:
    """Tests for AUM aggregation"""

    def test_totals(self):
        summary = summarize_accounts([
            CRMFinancialAccount(id="1", balance=100.0, household_id="h1"),
            CRMFinancialAccount(id="2", balance=200.0, household_id="h1"),
            CRMFinancialAccount(id="3", balance=50.0, household_id="h2"),
            CRMFinancialAccount(id="4", balance=25.0),
        ])

        assert summary.total_aum == 375.0
        assert summary.aum_by_household == {"h1": 300.0, "h2": 50.0}
        assert len(summary.accounts) == 4

    def test_empty(self):
        summary = summarize_accounts([])

        assert summary == FinancialAccountsSummary()


@pytest.mark.asyncio
class TestResolveFinancialAccounts:
    """Tests for CRM -> data source -> empty fallback"""

    async def test_crm_with_fsc(self, sf_ctx, fake_fsc_adapter):
        adapter = fake_fsc_adapter
        adapter.financial_result = FinancialAccountsQueryResult(total_aum=10.0, fsc_available=True)
        custodian = FakeCustodian()

        result = await resolve_financial_accounts(adapter, sf_ctx, custodian)

        assert result.total_aum == 10.0
        assert custodian.calls == []

    async def test_crm_without_fsc_uses_data_source(self, sf_ctx, fake_fsc_adapter):
        adapter = fake_fsc_adapter
        adapter.financial_result = FinancialAccountsQueryResult(fsc_available=False)
        custodian = FakeCustodian()
        source_ctx = DataSourceContext(auth="api-key")

        result = await resolve_financial_accounts(
            adapter, sf_ctx, custodian, source_ctx, household_ids=[HOUSEHOLD_ID]
        )

        assert result.fsc_available is True
        assert result.total_aum == 1000.0
        assert custodian.calls == [(source_ctx, [HOUSEHOLD_ID])]

    async def test_adapter_without_optional_interface(self, sf_ctx, fake_adapter):
        custodian = FakeCustodian()

        result = await resolve_financial_accounts(fake_adapter, sf_ctx, custodian)

        assert result.aum_by_household == {HOUSEHOLD_ID: 1000.0}
        assert custodian.calls[0][0] == DataSourceContext()

    async def test_nothing_available(self, sf_ctx, fake_adapter):
        result = await resolve_financial_accounts(fake_adapter, sf_ctx)

        assert result == FinancialAccountsQueryResult(fsc_available=False)
