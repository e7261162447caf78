# src/services/realtime_ws/__init__.py
"""
Realtime WebSocket Gateway: live-обновления доставок.

Обеспечивает:
- WebSocket соединения с JWT из query-параметра
- Комнаты delivery:{id} и role:{role}
- Пересылку сообщений из Redis Pub/Sub
"""
