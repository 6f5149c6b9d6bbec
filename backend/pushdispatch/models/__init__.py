"""Database models."""
from .device_token import DeviceToken, Platform

__all__ = ["DeviceToken", "Platform"]
