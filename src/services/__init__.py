# src/services/__init__.py
"""
Микросервисы приложения.

Архитектура:
- Каждый сервис: независимое FastAPI-приложение
- Общая PostgreSQL (доставки, позиции курьеров, уведомления)
- Коммуникация через RabbitMQ (события) и HTTP (order-сервис)
- Redis для GEO-индекса курьеров и Pub/Sub

Сервисы:
- delivery_service: жизненный цикл доставки, диспетчеризация, трекинг, уведомления
- realtime_ws: WebSocket для live-tracking
"""

__all__: list[str] = []
