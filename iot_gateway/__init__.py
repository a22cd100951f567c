"""
IoT Gateway - ESP32 state synchronization server.

This package runs next to the device and:
- Accepts sensor reports from the ESP32 over HTTP or MQTT
- Queues client commands for the device's next poll
- Pushes the live device state to every WebSocket client
"""

__version__ = "1.0.0"
