from .stats import StreamStatistics, StatisticsSnapshot

__all__ = ["StreamStatistics", "StatisticsSnapshot"]
