"""
Heuristic classification of raw CloudWatch metrics.

Rules are evaluated top to bottom against the lower-cased metric name and
the first match wins. Unmatched names fall through to a per-namespace
default and finally to CUSTOM. This is a best-effort bucketing for
dashboards and alerting, not an authoritative taxonomy.
"""

from typing import Dict, Optional, Sequence, Tuple

from models.metrics import MetricType

NAME_RULES: Sequence[Tuple[Tuple[str, ...], MetricType]] = (
    (("cpu",), MetricType.CPU_UTILIZATION),
    (("memory",), MetricType.MEMORY_UTILIZATION),
    (("network",), MetricType.NETWORK_THROUGHPUT),
    (("error",), MetricType.ERROR_RATE),
    (("latency", "duration"), MetricType.LATENCY),
    (("request", "invocation"), MetricType.REQUEST_COUNT),
)

NAMESPACE_DEFAULTS: Dict[str, MetricType] = {
    "AWS/EC2": MetricType.CPU_UTILIZATION,
    "AWS/ECS": MetricType.CPU_UTILIZATION,
    "AWS/Lambda": MetricType.CPU_UTILIZATION,
    "AWS/RDS": MetricType.DATABASE_CONNECTIONS,
    "AWS/ApplicationELB": MetricType.REQUEST_COUNT,
}


def match_name_rule(metric_name: str) -> Optional[MetricType]:
    lowered = (metric_name or "").lower()
    for needles, metric_type in NAME_RULES:
        if any(needle in lowered for needle in needles):
            return metric_type
    return None


def classify_metric(namespace: str, metric_name: str) -> MetricType:
    """
    Classify a (namespace, metric name) pair.

    >>> classify_metric("AWS/EC2", "CPUUtilization")
    <MetricType.CPU_UTILIZATION: 'cpu_utilization'>
    """
    by_name = match_name_rule(metric_name)
    if by_name is not None:
        return by_name
    return NAMESPACE_DEFAULTS.get(namespace, MetricType.CUSTOM)
