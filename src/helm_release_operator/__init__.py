"""
Helm Release Operator - reconciles Helm releases onto remote EKS clusters.

This package provides:
- A resumable, poll-driven reconciliation driver for install/upgrade/uninstall
- A VPC bridge (relay function) for clusters without a public endpoint
- Readiness inspection of rendered release manifests
- A kopf host that drives reconciliation from HelmRelease resources
"""

__version__ = "0.1.0"
