"""
Credential resolution for third-party APIs.

Keys are looked up in the admin-managed ``admin_config`` table first and fall
back to process settings (environment / .env) when absent.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

import httpx
import sqlalchemy as sa

from .config import Settings, get_config
from .database import DatabaseManager
from .models import AdminConfig, utcnow

logger = logging.getLogger(__name__)

GEMINI_API_KEY = "gemini_api_key"
SPOTIFY_CLIENT_ID = "spotify_client_id"
SPOTIFY_CLIENT_SECRET = "spotify_client_secret"
YOUTUBE_API_KEY = "youtube_api_key"

KNOWN_KEYS = (GEMINI_API_KEY, SPOTIFY_CLIENT_ID, SPOTIFY_CLIENT_SECRET, YOUTUBE_API_KEY)


class ConfigStore(ABC):
    """Source of admin-managed key/value settings"""

    @abstractmethod
    async def get_values(self, keys: Iterable[str]) -> Dict[str, str]:
        """Return the non-empty values stored for the given keys"""
        pass


class DatabaseConfigStore(ConfigStore):
    """admin_config table accessed through the service's own database"""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def get_values(self, keys: Iterable[str]) -> Dict[str, str]:
        keys = list(keys)
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                sa.select(AdminConfig.key, AdminConfig.value).where(AdminConfig.key.in_(keys))
            )
            return {key: value for key, value in result.all() if value}

    async def set_values(self, values: Dict[str, str]) -> None:
        """Upsert admin settings"""
        async with self.db_manager.get_session() as session:
            for key, value in values.items():
                row = await session.get(AdminConfig, key)
                if row is None:
                    session.add(AdminConfig(key=key, value=value))
                else:
                    row.value = value
                    row.updated_at = utcnow()
        logger.info("Admin configuration updated", extra={"keys": sorted(values)})

    async def list_keys(self) -> Dict[str, bool]:
        """Which settings are configured, without exposing their values"""
        async with self.db_manager.get_session() as session:
            result = await session.execute(sa.select(AdminConfig.key, AdminConfig.value))
            return {key: bool(value) for key, value in result.all()}


class RestConfigStore(ConfigStore):
    """admin_config read through the backend platform's records REST API"""

    def __init__(self, base_url: str, anon_key: str, http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.http_client = http_client
        self.timeout = timeout

    async def _fetch(self, client: httpx.AsyncClient, key: str) -> Optional[str]:
        url = f"{self.base_url}/api/database/records/admin_config"
        resp = await client.get(
            url,
            params={"select": "value", "key": f"eq.{key}", "limit": "1"},
            headers={"Authorization": f"Bearer {self.anon_key}"},
        )
        if resp.status_code != 200:
            return None
        rows = resp.json()
        if isinstance(rows, dict):
            rows = rows.get("data") or []
        if rows and isinstance(rows[0], dict):
            return rows[0].get("value") or None
        return None

    async def get_values(self, keys: Iterable[str]) -> Dict[str, str]:
        values = {}
        if self.http_client is not None:
            client, owned = self.http_client, False
        else:
            client, owned = httpx.AsyncClient(timeout=self.timeout), True
        try:
            for key in keys:
                value = await self._fetch(client, key)
                if value:
                    values[key] = value
        finally:
            if owned:
                await client.aclose()
        return values


class CredentialResolver:
    """Resolves credentials: admin_config first, then settings"""

    def __init__(self, store: Optional[ConfigStore] = None, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_config()

    def _fallback(self, key: str) -> Optional[str]:
        return getattr(self.settings, key, None) or None

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Optional[str]]:
        keys = list(keys)
        stored: Dict[str, str] = {}
        if self.store is not None:
            try:
                stored = await self.store.get_values(keys)
            except Exception as e:
                # Store outages degrade to environment credentials
                logger.warning(f"admin_config lookup failed, using environment fallback: {e}")
        return {key: stored.get(key) or self._fallback(key) for key in keys}

    async def get(self, key: str) -> Optional[str]:
        return (await self.get_many([key]))[key]
