"""
sensor-link: MQTT session layer for a sensor device.

Connects to a broker, subscribes to the command inbox, decodes inbound
commands and publishes sensor readings.
"""
