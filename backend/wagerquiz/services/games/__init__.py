"""Game domain services: room registry, stage engine, scoring and timers.

This package contains the transport-independent game logic imported by
the Socket.IO handlers and HTTP routes, keeping transport concerns
separated from core game mechanics.
"""
