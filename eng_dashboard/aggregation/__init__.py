"""
Aggregation - Peer benchmarks derived from the leaderboard
"""

from eng_dashboard.aggregation.benchmark_aggregator import (
    BenchmarkAggregator,
    average_positive,
    compute_benchmarks,
    extract_metrics,
)

__all__ = ["BenchmarkAggregator", "average_positive", "compute_benchmarks", "extract_metrics"]
