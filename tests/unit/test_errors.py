"""
Unit tests for CRM error taxonomy
"""

import pytest

from crm_integrations.src.errors import (
    CRMAuthError,
    CRMError,
    CRMMutationError,
    CRMNotSupportedError,
    CRMQueryError,
)


class TestCRMErrors:
    """Tests for error classes and HTTP status mapping"""

    def test_all_errors_are_crm_errors(self):
        """Every taxonomy error can be caught as CRMError"""
        errors = [
            CRMNotSupportedError("Salesforce", "financial accounts"),
            CRMAuthError("expired"),
            CRMQueryError("bad query", 400),
            CRMMutationError("bad insert", 400, "Account"),
        ]

        for error in errors:
            assert isinstance(error, CRMError)

    @pytest.mark.parametrize(
        "error, status",
        [
            (CRMNotSupportedError("Salesforce", "workflows"), 501),
            (CRMAuthError("expired"), 401),
            (CRMQueryError("bad query", 400), 502),
            (CRMMutationError("bad insert", 400, "Task"), 502),
        ],
    )
    def test_http_status(self, error, status):
        """Each error carries its recommended HTTP status"""
        assert error.http_status == status

    def test_not_supported_message(self):
        """Message names the provider and the feature"""
        error = CRMNotSupportedError("Salesforce", "contact relationships")

        assert str(error) == "Salesforce does not support contact relationships"
        assert error.provider == "Salesforce"
        assert error.feature == "contact relationships"

    def test_query_error_keeps_provider_status(self):
        """Provider status is kept separately from the HTTP status"""
        error = CRMQueryError("MALFORMED_QUERY: unexpected token", 400)

        assert error.status == 400
        assert error.message == "MALFORMED_QUERY: unexpected token"

    def test_mutation_error_to_dict_includes_object_type(self):
        """Serialized mutation error names the object"""
        data = CRMMutationError("REQUIRED_FIELD_MISSING: Name", 400, "Account").to_dict()

        assert data == {
            "error": "REQUIRED_FIELD_MISSING: Name",
            "code": "CRM_MUTATION_FAILED",
            "status": 502,
            "object_type": "Account",
        }
