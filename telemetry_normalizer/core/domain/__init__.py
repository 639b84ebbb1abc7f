"""Modelos de dominio del core de normalización."""

from .device import Device
from .legacy import Entity, Relationship
from .measurement import Measurement, MeasurementType, infer_type
from .storage_record import StorageRecord, parse_timestamp, record_matches

__all__ = [
    "Device",
    "Entity",
    "Measurement",
    "MeasurementType",
    "Relationship",
    "StorageRecord",
    "infer_type",
    "parse_timestamp",
    "record_matches",
]
