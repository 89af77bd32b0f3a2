"""Thermofridge state service: HTTP API, MQTT bridge, JSON-file state store and metrics."""

__version__ = "0.1.0"