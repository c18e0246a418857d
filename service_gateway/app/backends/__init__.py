"""
Backend sets (target groups) and their health lifecycle.

- health: health-check policy and HTTP probe
- target_group: members, backend sets and route bindings
- monitor: per-member fixed-interval polling
"""

from .health import HealthCheckPolicy, HttpHealthProbe, parse_http_codes
from .monitor import HealthMonitor, HealthProbe
from .target_group import BackendMember, BackendSet, MemberState, TargetBinding

__all__ = [
    "BackendMember",
    "BackendSet",
    "HealthCheckPolicy",
    "HealthMonitor",
    "HealthProbe",
    "HttpHealthProbe",
    "MemberState",
    "TargetBinding",
    "parse_http_codes",
]
