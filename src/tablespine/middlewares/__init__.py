"""Bundled middlewares."""

from .statistics import OperationStats, StatisticsMiddleware

__all__ = [
    "OperationStats",
    "StatisticsMiddleware",
]
