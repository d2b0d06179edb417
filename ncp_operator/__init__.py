"""NSX-NCP Pod Operator: drift repair and DNS crash-loop remediation for NSX workloads."""

__version__ = "1.0.0"
