"""
Constants used throughout the Helm release operator.

This module defines all constant values used by the operator including:
- Custom resource coordinates and finalizer names
- Bridge function naming and runtime defaults
- Helm defaults (stable repository, default namespace)
- Timing defaults for polling and timeouts
"""

# Custom resource coordinates
CRD_GROUP = "helmbridge.io"
CRD_VERSION = "v1"
CRD_PLURAL = "helmreleases"
RELEASE_FINALIZER = "helmbridge.io/release-cleanup"

# Status phase constants
PHASE_PENDING = "Pending"
PHASE_RECONCILING = "Reconciling"
PHASE_READY = "Ready"
PHASE_FAILED = "Failed"
PHASE_DELETING = "Deleting"

# Helm defaults
DEFAULT_NAMESPACE = "default"
DEFAULT_CHART_REPO = "stable"
STABLE_REPO_URL = "https://charts.helm.sh/stable"
HELM_STORAGE_DRIVER = "secret"

# Bridge (VPC connector) function defaults
BRIDGE_FUNCTION_PREFIX = "helm-provider-vpc-connector-"
BRIDGE_HANDLER = "helm_release_operator.bridge.handler.lambda_handler"
BRIDGE_RUNTIME = "python3.12"
BRIDGE_MEMORY_SIZE = 256
BRIDGE_TIMEOUT = 900

# Public endpoint marker: a cluster is reachable from anywhere only with this CIDR
PUBLIC_ACCESS_CIDR = "0.0.0.0/0"

# Timing defaults (in seconds unless stated otherwise)
DEFAULT_CALLBACK_DELAY = 30
DEFAULT_TIMEOUT_MINUTES = 60
DEFAULT_BRIDGE_STABILIZE_ATTEMPTS = 3
DEFAULT_BRIDGE_CREATE_POLL_INTERVAL = 5.0
DEFAULT_BRIDGE_PENDING_POLL_INTERVAL = 8.0
DEFAULT_REPO_LOCK_TIMEOUT = 30.0

# Error message templates
ERROR_UNHANDLED_STAGE = "Unhandled stage {}"
ERROR_RELEASE_FAILED = "Release failed"
ERROR_TIMED_OUT = "resource creation timed out\n, LastKnownErrors: {}"
ERROR_BRIDGE_NOT_STABLE = "vpc connector didn't stabilize in time"
ERROR_NOT_IMPLEMENTED = "Not implemented: {}"
