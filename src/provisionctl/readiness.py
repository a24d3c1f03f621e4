"""Reachability polling for freshly provisioned hosts."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Optional

from provisionctl.contracts.timeouts import (
    READINESS_CONNECT_TIMEOUT_S,
    READINESS_DEFAULT_TIMEOUT_S,
    READINESS_INITIAL_DELAY_S,
    READINESS_MAX_DELAY_S,
)
from provisionctl.retry import retry_with_backoff

logger = logging.getLogger(__name__)

__all__ = ["probe_tcp", "wait_for_tcp"]


def probe_tcp(host: str, port: int, connect_timeout: float = READINESS_CONNECT_TIMEOUT_S) -> None:
    """Open and close one TCP connection; raises OSError when unreachable."""
    with socket.create_connection((host, port), timeout=connect_timeout):
        pass


def wait_for_tcp(
    host: str,
    port: int,
    timeout: float = READINESS_DEFAULT_TIMEOUT_S,
    initial_delay: float = READINESS_INITIAL_DELAY_S,
    max_delay: float = READINESS_MAX_DELAY_S,
    cancel: Optional[threading.Event] = None,
    connect_timeout: float = READINESS_CONNECT_TIMEOUT_S,
) -> None:
    """
    Wait until `host:port` accepts TCP connections.

    Raises:
        ReadinessTimeout: If the host is not reachable before `timeout`
        OperationCancelled: If `cancel` is set while waiting
    """
    logger.info(f"Waiting for {host}:{port} to accept connections (timeout {timeout:.0f}s)")
    retry_with_backoff(
        lambda: probe_tcp(host, port, connect_timeout),
        description=f"connect to {host}:{port}",
        max_attempts=None,
        initial_delay=initial_delay,
        max_delay=max_delay,
        backoff=2.0,
        timeout=timeout,
        retry_on=(OSError,),
        cancel=cancel,
    )
    logger.info(f"{host}:{port} is reachable")
