# src/infra/redis_client.py
"""
Клиент Redis для трансляции координат водителей.

Фиксы активных доставок публикуются в канал delivery:{order_id}:location,
последняя позиция дублируется ключом с TTL окна свежести.
"""

from __future__ import annotations

import redis.asyncio as redis
from pydantic import BaseModel

from src.common.logger import log_error, log_info
from src.common.constants import TypeMsg


class RedisClient:
    """Singleton поверх пула redis.asyncio с префиксом ключей и каналов."""

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "dispatch"

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def _make_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Открывает пул и проверяет его PING.

        Args:
            url: URL Redis
            max_connections: Размер пула
            namespace: Префикс ключей и каналов (по умолчанию "dispatch")
        """
        if self._client is not None:
            return
        if namespace:
            self._namespace = namespace

        self._client = redis.from_url(url, max_connections=max_connections, decode_responses=True)
        await self._client.ping()
        await log_info(f"Redis: пул открыт, namespace={self._namespace}", type_msg=TypeMsg.DEBUG)

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def set_model(self, key: str, model: BaseModel, ttl: int | None = None) -> bool:
        """Кладёт модель в JSON под ключом с необязательным TTL (секунды)."""
        return await self.client.set(self._make_key(key), model.model_dump_json(), ex=ttl)

    async def publish(self, channel: str, message: str) -> int:
        """
        Публикует сообщение в канал.

        Returns:
            Количество подписчиков, получивших сообщение
        """
        return await self.client.publish(self._make_key(channel), message)

    async def health_check(self) -> bool:
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_redis() -> RedisClient:
    return RedisClient()


async def init_redis() -> None:
    """Подключение по настройкам секции redis."""
    from src.config import settings

    await get_redis().connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_redis() -> None:
    await get_redis().disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)
