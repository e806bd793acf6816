"""
Service Organization
====================
**heating/**
  The coordination layer (lock manager, command dispatcher) and the room
  logic built on it (override modes, intervention detection, the room
  controller). All are singletons wired by :class:`ServiceContainer`.

**container.py**
  Builds the services from :class:`~app.config.AppConfig`.
"""
