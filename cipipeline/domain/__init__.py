"""Domain models for recorded builds."""

from .models import BuildRecord, StageRecord

__all__ = ["BuildRecord", "StageRecord"]
