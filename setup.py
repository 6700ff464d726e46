"""
Setup для CRM слоя (crm_integrations + shared)
"""

from setuptools import setup, find_packages

setup(
    name="advisor-crm-integrations",
    version="0.1.0",
    description="CRM integration layer (ports and adapters) for an advisor practice app",
    packages=find_packages(include=["crm_integrations", "crm_integrations.*", "shared", "shared.*"]),
    install_requires=[
        "pydantic>=2.5.0",
        "pydantic-settings>=2.1.0",
        "httpx>=0.26.0",
        "tenacity>=8.2.0",
        "structlog>=24.1.0",
        "cryptography>=42.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0.0",
            "pytest-asyncio>=0.23.0",
            "pytest-mock>=3.12.0",
        ],
    },
    python_requires=">=3.10",
)
