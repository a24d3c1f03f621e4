"""
Timeout and retry constants for provisionctl.

Centralizes timeout values to ensure consistency across the codebase
and make tuning easier. Runtime values come from ProvisionctlSettings;
these are the defaults it falls back to.
"""

from __future__ import annotations

# =============================================================================
# Subprocess Timeouts
# =============================================================================

# Default timeout for a single OpenTofu or Ansible invocation
TOOL_DEFAULT_TIMEOUT_S = 1800

# Grace period between SIGTERM and SIGKILL when stopping a process group
PROCESS_TERMINATE_GRACE_S = 10.0

# How often the runner checks for timeout and cancellation
PROCESS_POLL_INTERVAL_S = 0.1

# =============================================================================
# Readiness Polling
# =============================================================================

# Overall budget for a target host to become reachable
READINESS_DEFAULT_TIMEOUT_S = 300.0

# First delay between reachability probes
READINESS_INITIAL_DELAY_S = 2.0

# Upper bound for the delay between probes
READINESS_MAX_DELAY_S = 15.0

# Timeout for a single TCP connect probe
READINESS_CONNECT_TIMEOUT_S = 5.0

# =============================================================================
# Retry Configuration
# =============================================================================

# Attempts for network sensitive steps (package cache updates)
DEFAULT_MAX_RETRIES = 3

# Initial delay between retries
DEFAULT_RETRY_DELAY_S = 5.0

# Exponential backoff multiplier
DEFAULT_RETRY_BACKOFF = 2.0
