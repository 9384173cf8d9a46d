"""Trivy vulnerability scans across a fleet of Docker hosts, summarised in one HTML dashboard."""
__version__ = "1.0.0"
