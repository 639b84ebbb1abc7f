"""Core module - modelos de dominio compartidos.

Estructura:
- domain/  → Measurement, Device, Entity/Relationship legacy, StorageRecord
"""
