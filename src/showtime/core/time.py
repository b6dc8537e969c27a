"""Naive UTC timestamps, the format every DateTime column stores"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
