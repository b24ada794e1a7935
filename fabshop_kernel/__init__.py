"""
fabshop kernel

Shared infrastructure for the fabrication-shop order engine:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- Database base classes, engine and column types
- Injectable clock, workflow value objects and change notifications
- Client / worker registry and locked sequence counters
"""

__version__ = "0.1.0"
