"""
Unit tests for SOQL sanitization and OrgMapping query building
"""

import pytest

from crm_integrations.src.adapters.soql import (
    MAX_SOQL_INPUT_LENGTH,
    OrgMapping,
    SalesforceValidationError,
    is_valid_salesforce_id,
    require_salesforce_id,
    sanitize_soql,
    soql_id_list,
)


class TestSanitizeSoql:
    """Tests for escaping user input before interpolation"""

    def test_plain_text_unchanged(self):
        assert sanitize_soql("Smith Household") == "Smith Household"

    def test_single_quote_escaped(self):
        """A quote can not close the literal"""
        assert sanitize_soql("O'Brien") == "O\\'Brien"

    def test_backslash_escaped_before_quote(self):
        """Backslash is escaped first so the quote escape stays intact"""
        assert sanitize_soql("\\'") == "\\\\\\'"

    @pytest.mark.parametrize(
        "payload",
        [
            "' OR Name != '",
            "x' OR Id != null OR Name = 'y",
            "\\' OR 1=1 --",
        ],
    )
    def test_injection_payloads_stay_inside_literal(self, payload):
        """Every quote in the result is preceded by an escaping backslash"""
        result = sanitize_soql(payload)

        for i, char in enumerate(result):
            if char == "'":
                backslashes = 0
                j = i - 1
                while j >= 0 and result[j] == "\\":
                    backslashes += 1
                    j -= 1
                assert backslashes % 2 == 1

    def test_like_wildcards_removed(self):
        assert sanitize_soql("100%_match") == "100match"

    def test_control_characters_removed(self):
        assert sanitize_soql("line\none\ttab\x00") == "lineonetab"

    def test_truncated(self):
        assert len(sanitize_soql("a" * 500)) == MAX_SOQL_INPUT_LENGTH

    @pytest.mark.parametrize("value", [None, 42, ["x"], {"a": 1}])
    def test_non_string_becomes_empty(self, value):
        assert sanitize_soql(value) == ""

    def test_id_list(self):
        assert soql_id_list(["001A", "001'B"]) == "'001A','001\\'B'"

    def test_quote_at_length_limit_stays_escaped(self):
        """Cut happens on raw input so a trailing quote keeps its escape"""
        result = sanitize_soql("a" * (MAX_SOQL_INPUT_LENGTH - 1) + "'")

        assert result == "a" * (MAX_SOQL_INPUT_LENGTH - 1) + "\\'"

    def test_id_list_value_can_not_escape_literal(self):
        """Second value stays inside its own literal"""
        payload = ") OR Name != null OR Id IN ("
        result = soql_id_list(["a" * (MAX_SOQL_INPUT_LENGTH - 1) + "'", payload])

        unescaped_quotes = 0
        for i, char in enumerate(result):
            if char == "'":
                backslashes = 0
                j = i - 1
                while j >= 0 and result[j] == "\\":
                    backslashes += 1
                    j -= 1
                if backslashes % 2 == 0:
                    unescaped_quotes += 1

        assert unescaped_quotes == 4
        assert result.endswith(",'" + payload + "'")


class TestSalesforceId:
    """Tests for Salesforce ID validation"""

    @pytest.mark.parametrize("value", ["001000000000001", "001000000000001AAA"])
    def test_valid_ids(self, value):
        assert is_valid_salesforce_id(value) is True
        assert require_salesforce_id(value) == value

    @pytest.mark.parametrize(
        "value",
        ["", "001", "0010000000000012", "001000000000001'--", None, 12345],
    )
    def test_invalid_ids(self, value):
        assert is_valid_salesforce_id(value) is False

    def test_require_raises_value_error(self):
        """Validation error is a caller input error"""
        with pytest.raises(SalesforceValidationError, match="Invalid Salesforce household ID"):
            require_salesforce_id("nope", "household ID")

        assert issubclass(SalesforceValidationError, ValueError)


class TestOrgMapping:
    """Tests for household query building"""

    def test_default_filter_is_type_household(self):
        assert OrgMapping().household_filter() == "Type = 'Household'"

    def test_record_type_takes_precedence(self):
        org = OrgMapping(household_record_type_developer_name="IndustriesHousehold")

        assert org.household_filter() == "RecordType.DeveloperName = 'IndustriesHousehold'"
        assert org.household_type_value() is None

    def test_no_filter(self):
        org = OrgMapping(household_filter_field=None, household_filter_value=None)

        assert org.household_filter() == ""
        assert org.household_filter_and() == ""
        assert org.household_filter_where() == ""

    def test_search_households_query(self):
        soql = OrgMapping().search_households("Id, Name", "smith", 11, 0)

        assert soql == (
            "SELECT Id, Name FROM Account WHERE Type = 'Household' "
            "AND Name LIKE '%smith%' ORDER BY CreatedDate DESC LIMIT 11"
        )

    def test_search_households_with_offset(self):
        soql = OrgMapping().search_households("Id", "smith", 11, 20)

        assert soql.endswith("LIMIT 11 OFFSET 20")

    def test_list_households_without_filter(self):
        org = OrgMapping(household_filter_field=None)
        soql = org.list_households("Id", 6)

        assert soql == "SELECT Id FROM Account ORDER BY CreatedDate DESC LIMIT 6"

    def test_advisor_select(self):
        assert OrgMapping().advisor_select() == "Owner.Name"
        assert OrgMapping(advisor_field="Advisor__c").advisor_select() == "Advisor__c"

    def test_new_household_fields(self):
        assert OrgMapping().new_household_fields("Smith Household", "New client") == {
            "Name": "Smith Household",
            "Description": "New client",
            "Type": "Household",
        }

    def test_new_household_fields_with_record_type(self):
        org = OrgMapping(
            household_record_type_developer_name="IndustriesHousehold",
            household_record_type_id="012000000000001AAA",
        )

        assert org.new_household_fields("Smith Household", "") == {
            "Name": "Smith Household",
            "Description": "",
            "RecordTypeId": "012000000000001AAA",
        }
