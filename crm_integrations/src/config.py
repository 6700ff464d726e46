"""
Configuration для CRM Integrations
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Настройки CRM слоя"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Активный адаптер (один CRM на деплой)
    crm_provider: str = Field(default="salesforce", description="CRM provider id")

    # Salesforce: client_credentials fallback
    salesforce_client_id: Optional[str] = Field(None)
    salesforce_client_secret: Optional[str] = Field(None)
    salesforce_instance_url: Optional[str] = Field(None)

    # Salesforce: Connected App для OAuth refresh
    salesforce_oauth_client_id: Optional[str] = Field(None)
    salesforce_oauth_client_secret: Optional[str] = Field(None)
    salesforce_oauth_redirect_uri: str = Field(
        default="http://localhost:3000/api/salesforce/callback"
    )

    salesforce_api_version: str = Field(default="v59.0")
    salesforce_timeout: float = Field(default=30.0, description="Seconds per request")

    # Шифрование сохраненного подключения
    encryption_master_key: Optional[str] = Field(None)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @property
    def has_client_credentials(self) -> bool:
        """Есть ли все настройки для client_credentials"""
        return bool(
            self.salesforce_client_id
            and self.salesforce_client_secret
            and self.salesforce_instance_url
        )


@lru_cache
def get_settings() -> Settings:
    """Закэшированные настройки процесса"""
    return Settings()
