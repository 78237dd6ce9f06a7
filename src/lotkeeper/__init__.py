# File: src/lotkeeper/__init__.py
"""
lotkeeper - slot and vehicle allocation engine for a numbered parking lot

Layers:
- domain: entities, the LotState aggregate, slot registry and vehicle ledger
- application: the allocation coordinator and its DTOs
- infrastructure: state stores and event messaging
"""

__version__ = "1.0.0"
