"""
Calico Accountant

Per-pod network policy accounting for Calico hosts. Reads iptables packet
counters, attributes them to local workloads and policies, and exposes the
result as Prometheus metrics.
"""

__version__ = "1.0.0"
