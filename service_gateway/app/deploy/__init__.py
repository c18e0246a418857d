"""
Service attachment and blue/green deployment.
"""

from .attach import AttachResult, BootstrapSequence, BootstrapStep, ServiceAttacher, ServiceSpec, StepState
from .blue_green import BlueGreenDeployment, CutoverPolicy, DeploymentStatus
from .dependencies import DependencyCheckFailed, DependencyProbe, HttpDependency, RedisDependency, TcpDependency

__all__ = [
    "AttachResult",
    "BlueGreenDeployment",
    "BootstrapSequence",
    "BootstrapStep",
    "CutoverPolicy",
    "DependencyCheckFailed",
    "DependencyProbe",
    "DeploymentStatus",
    "HttpDependency",
    "RedisDependency",
    "ServiceAttacher",
    "ServiceSpec",
    "StepState",
    "TcpDependency",
]
