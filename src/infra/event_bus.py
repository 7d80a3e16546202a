# src/infra/event_bus.py
"""
Публикация доменных событий водителей в RabbitMQ.

Topic exchange, routing key = event_type. Потребители (push-уведомления,
аналитика) живут в других сервисах и объявляют свои очереди сами.
"""

from __future__ import annotations

from datetime import datetime, timezone

import aio_pika
from aio_pika import DeliveryMode, ExchangeType, Message
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractExchange

from src.common.logger import log_error, log_info
from src.common.constants import TypeMsg
from src.shared.events import DomainEvent


class EventBus:
    """Singleton-издатель поверх aio_pika.connect_robust."""

    _instance: EventBus | None = None
    _connection: AbstractConnection | None = None
    _channel: AbstractChannel | None = None
    _exchange: AbstractExchange | None = None

    def __new__(cls) -> EventBus:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._connection = None
        self._channel = None
        self._exchange = None
        self._exchange_name = "dispatch.events"

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed

    async def connect(
        self,
        url: str,
        exchange_name: str | None = None,
        prefetch_count: int = 10,
    ) -> None:
        """
        Открывает robust-соединение и объявляет durable topic exchange.

        Args:
            url: AMQP URL
            exchange_name: Имя exchange (по умолчанию "dispatch.events")
            prefetch_count: QoS канала
        """
        if self.is_connected:
            return
        if exchange_name:
            self._exchange_name = exchange_name

        self._connection = await aio_pika.connect_robust(url)
        self._channel = await self._connection.channel()
        await self._channel.set_qos(prefetch_count=prefetch_count)
        self._exchange = await self._channel.declare_exchange(
            self._exchange_name,
            ExchangeType.TOPIC,
            durable=True,
        )

    async def disconnect(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None

    async def publish(self, event: DomainEvent) -> None:
        """
        Публикует событие persistent-сообщением.
        Сбой публикации логируется: доменная операция к этому моменту уже применена.
        """
        if not self.is_connected or self._exchange is None:
            await log_error(f"Событие {event.event_type} потеряно: нет соединения с RabbitMQ")
            return

        message = Message(
            body=event.to_json().encode(),
            content_type="application/json",
            message_id=event.event_id,
            timestamp=datetime.now(timezone.utc),
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        try:
            await self._exchange.publish(message, routing_key=event.event_type)
        except Exception as e:
            await log_error(f"Ошибка публикации {event.event_type} ({event.event_id}): {e}")
            return

        await log_info(f"Событие опубликовано: {event.event_type}", type_msg=TypeMsg.DEBUG)

    async def health_check(self) -> bool:
        return self.is_connected


def get_event_bus() -> EventBus:
    return EventBus()


async def init_event_bus() -> None:
    """Подключение по настройкам секции rabbitmq."""
    from src.config import settings

    cfg = settings.rabbitmq
    await get_event_bus().connect(
        url=cfg.url,
        exchange_name=cfg.RABBITMQ_EXCHANGE,
        prefetch_count=cfg.RABBITMQ_PREFETCH_COUNT,
    )
    await log_info(f"RabbitMQ подключён: {cfg.RABBITMQ_HOST}:{cfg.RABBITMQ_PORT}", type_msg=TypeMsg.INFO)


async def close_event_bus() -> None:
    await get_event_bus().disconnect()
    await log_info("RabbitMQ отключён", type_msg=TypeMsg.INFO)


async def publish_event(event_bus: EventBus | None, event: DomainEvent) -> None:
    """Публикует через шину, если она подключена к сервису; иначе только лог."""
    if event_bus is None:
        await log_info(f"Событие {event.event_type} не опубликовано: шина отключена", type_msg=TypeMsg.DEBUG)
        return
    await event_bus.publish(event)
