"""
Live World State - the in-memory world model behind a persistent game server.

This service keeps one authoritative copy of:
- Territories and who controls them
- Active world events (conflicts, raids, economic shifts, weather)
- Market prices and economic indicators

It recomputes that state on fixed ticks, writes it through to Redis
(or an in-process fallback when Redis is gone), and pushes every change
to real-time observers.
"""

__version__ = "0.1.0"
__author__ = "World State Team"
