"""Finding reports."""

from .generator import ReportGenerator

__all__ = ["ReportGenerator"]
