"""Shared severity vocabulary for findings."""

from typing import Literal

# Reusable severity levels for validation and type safety across schemas.
SeverityLevel = Literal["critical", "high", "medium", "low", "info"]
