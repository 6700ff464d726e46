"""
CRM адаптеры (реализации порта BaseCRMAdapter)
"""

from .salesforce import SalesforceAdapter

__all__ = ["SalesforceAdapter"]
