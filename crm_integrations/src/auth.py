"""
Salesforce authentication context

Откуда берется SalesforceContext для одного вызова:
1. Сохраненное (зашифрованное) OAuth подключение пользователя
2. Если токен истек - обновление через refresh_token
3. Иначе client_credentials из настроек деплоя

Хранение зашифрованного подключения (cookie, БД) - забота вызывающего кода:
здесь только seal / open и сам обмен токенов.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Literal, Optional

import httpx
import structlog
from cryptography.fernet import InvalidToken
from pydantic import BaseModel, ConfigDict, Field

from .adapters.sf_client import SalesforceContext, extract_error, json_or_none
from .config import Settings, get_settings
from .errors import CRMAuthError
from shared.utils.crypto import CryptoService

logger = structlog.get_logger(__name__)

# Salesforce не возвращает expires_in, access token живет около двух часов
TOKEN_LIFETIME = timedelta(hours=2)
OAUTH_SCOPE = "api refresh_token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_domain(domain: str) -> str:
    """myorg.my.salesforce.com -> https://myorg.my.salesforce.com"""
    domain = domain.strip().rstrip("/")
    return domain if domain.startswith("http") else f"https://{domain}"


class SalesforceConnection(BaseModel):
    """Подключение к org (то, что хранится в зашифрованном виде)"""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    instance_url: str
    org_id: Optional[str] = None
    user_name: Optional[str] = None
    connected_at: datetime = Field(default_factory=_utcnow)
    expires_at: Optional[datetime] = None
    source: Literal["oauth", "env"] = "oauth"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or _utcnow())

    def to_context(self) -> SalesforceContext:
        return SalesforceContext(
            instance_url=self.instance_url,
            access_token=self.access_token,
        )


class ConnectionStatus(BaseModel):
    """Статус подключения для экрана настроек (без токенов)"""

    connected: bool
    instance_url: Optional[str] = None
    user_name: Optional[str] = None
    org_id: Optional[str] = None
    connected_at: Optional[datetime] = None
    source: Optional[Literal["oauth", "env"]] = None


class SalesforceTokenProvider:
    """
    Получение access token для Salesforce

    Args:
        settings: Настройки (по умолчанию get_settings())
        crypto: CryptoService для сохраненных подключений
        http_client: httpx.AsyncClient для token endpoint
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        crypto: Optional[CryptoService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self._crypto = crypto
        self.http = http_client or httpx.AsyncClient(timeout=self.settings.salesforce_timeout)

    @property
    def crypto(self) -> CryptoService:
        if self._crypto is None:
            self._crypto = CryptoService(self.settings.encryption_master_key)
        return self._crypto

    async def aclose(self) -> None:
        await self.http.aclose()

    # ============================================
    # ХРАНЕНИЕ
    # ============================================

    def seal(self, connection: SalesforceConnection) -> str:
        """Зашифровать подключение для хранения"""
        return self.crypto.encrypt_json(connection.model_dump(mode="json"))

    def open(self, sealed: Optional[str]) -> Optional[SalesforceConnection]:
        """
        Расшифровать сохраненное подключение

        Returns:
            SalesforceConnection или None, если данных нет или они повреждены
            (сменился ключ, обрезанная cookie). Вызывающий код должен удалить
            такое подключение из хранилища.
        """
        if not sealed:
            return None

        try:
            return SalesforceConnection.model_validate(self.crypto.decrypt_json(sealed))
        except (InvalidToken, ValueError) as e:
            logger.warning("salesforce_stored_connection_invalid", error_type=type(e).__name__)
            return None

    # ============================================
    # РАЗРЕШЕНИЕ КОНТЕКСТА
    # ============================================

    async def resolve(self, stored_connection: Optional[str] = None) -> SalesforceContext:
        """
        Контекст вызова для текущего пользователя

        Raises:
            CRMAuthError: Нет ни рабочего подключения, ни client_credentials
        """
        connection = await self.resolve_connection(stored_connection)
        return connection.to_context()

    async def resolve_connection(
        self,
        stored_connection: Optional[str] = None
    ) -> SalesforceConnection:
        """
        То же, что resolve(), но возвращает подключение целиком

        Если токен был обновлен, вызывающий код может сохранить seal(результат).
        """
        connection = self.open(stored_connection)

        if connection is not None:
            if not connection.is_expired():
                return connection

            if connection.refresh_token:
                try:
                    return await self.refresh(connection)
                except CRMAuthError as e:
                    logger.warning("salesforce_refresh_fallback", error=e.message)

        return await self.client_credentials()

    async def refresh(self, connection: SalesforceConnection) -> SalesforceConnection:
        """Обновление access token через refresh_token"""
        if not connection.refresh_token:
            raise CRMAuthError("Stored Salesforce connection has no refresh token")

        data = await self._token_request(
            f"{connection.instance_url.rstrip('/')}/services/oauth2/token",
            {
                "grant_type": "refresh_token",
                "refresh_token": connection.refresh_token,
                "client_id": self._oauth_client_id(),
                "client_secret": self._oauth_client_secret(),
            },
            "Token refresh failed",
        )

        logger.info("salesforce_token_refreshed")
        return connection.model_copy(
            update={
                "access_token": data["access_token"],
                "instance_url": data.get("instance_url") or connection.instance_url,
                "expires_at": _utcnow() + TOKEN_LIFETIME,
            }
        )

    async def client_credentials(self) -> SalesforceConnection:
        """Токен деплоя (client_credentials flow)"""
        settings = self.settings
        if not settings.has_client_credentials:
            raise CRMAuthError(
                "No Salesforce connection. Connect via Settings or configure "
                "SALESFORCE_CLIENT_ID, SALESFORCE_CLIENT_SECRET and SALESFORCE_INSTANCE_URL"
            )

        data = await self._token_request(
            f"{settings.salesforce_instance_url.rstrip('/')}/services/oauth2/token",
            {
                "grant_type": "client_credentials",
                "client_id": settings.salesforce_client_id,
                "client_secret": settings.salesforce_client_secret,
            },
            "Failed to get access token",
        )

        return SalesforceConnection(
            access_token=data["access_token"],
            instance_url=data.get("instance_url") or settings.salesforce_instance_url,
            source="env",
        )

    # ============================================
    # OAUTH (web server flow)
    # ============================================

    def build_authorize_url(self, domain: str) -> str:
        """URL страницы согласия Salesforce для домена org"""
        url = httpx.URL(
            f"{normalize_domain(domain)}/services/oauth2/authorize",
            params={
                "response_type": "code",
                "client_id": self._oauth_client_id(),
                "redirect_uri": self.settings.salesforce_oauth_redirect_uri,
                "scope": OAUTH_SCOPE,
                "prompt": "consent",
            },
        )
        return str(url)

    async def exchange_code(self, code: str, domain: str) -> SalesforceConnection:
        """Обмен authorization code на подключение"""
        data = await self._token_request(
            f"{normalize_domain(domain)}/services/oauth2/token",
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self._oauth_client_id(),
                "client_secret": self._oauth_client_secret(),
                "redirect_uri": self.settings.salesforce_oauth_redirect_uri,
            },
            "Token exchange failed",
        )

        identity = await self._fetch_identity(data.get("id"), data["access_token"])

        connection = SalesforceConnection(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            instance_url=data.get("instance_url") or normalize_domain(domain),
            org_id=identity.get("organization_id") or None,
            user_name=identity.get("display_name") or identity.get("username") or None,
            expires_at=_utcnow() + TOKEN_LIFETIME,
            source="oauth",
        )

        logger.info("salesforce_connected", org_id=connection.org_id)
        return connection

    def connection_status(self, stored_connection: Optional[str] = None) -> ConnectionStatus:
        """Статус без сетевых запросов: сохраненное подключение, затем настройки"""
        connection = self.open(stored_connection)
        if connection is not None:
            return ConnectionStatus(
                connected=True,
                instance_url=connection.instance_url,
                user_name=connection.user_name,
                org_id=connection.org_id,
                connected_at=connection.connected_at,
                source=connection.source,
            )

        if self.settings.has_client_credentials:
            return ConnectionStatus(
                connected=True,
                instance_url=self.settings.salesforce_instance_url,
                source="env",
            )

        return ConnectionStatus(connected=False)

    # ============================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # ============================================

    def _oauth_client_id(self) -> str:
        return self.settings.salesforce_oauth_client_id or self.settings.salesforce_client_id or ""

    def _oauth_client_secret(self) -> str:
        return (
            self.settings.salesforce_oauth_client_secret
            or self.settings.salesforce_client_secret
            or ""
        )

    async def _token_request(
        self,
        url: str,
        params: Dict[str, Any],
        failure_message: str
    ) -> Dict[str, Any]:
        try:
            response = await self.http.post(
                url,
                data=params,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error(
                "salesforce_token_request_failed",
                grant_type=params.get("grant_type"),
                error=str(e),
            )
            raise CRMAuthError(f"{failure_message}: {e}") from e

        payload = json_or_none(response)

        if response.is_error or not isinstance(payload, dict) or not payload.get("access_token"):
            message = extract_error(payload, failure_message)
            logger.warning(
                "salesforce_token_rejected",
                grant_type=params.get("grant_type"),
                status_code=response.status_code,
                error=message,
            )
            raise CRMAuthError(message)

        return payload

    async def _fetch_identity(self, identity_url: Optional[str], access_token: str) -> Dict[str, Any]:
        """Имя пользователя и org для отображения (не критично для подключения)"""
        if not identity_url:
            return {}

        try:
            response = await self.http.get(
                identity_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("salesforce_identity_unavailable", error=str(e))
            return {}

        return payload if isinstance(payload, dict) else {}
