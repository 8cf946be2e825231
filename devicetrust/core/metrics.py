"""
Prometheus metrics for devicetrust.

Exposes key lifecycle and verification metrics via an HTTP /metrics endpoint.

Usage:
    from devicetrust.core.metrics import start_metrics_server, track_transition

    start_metrics_server(enabled=True, port=9108)
    track_transition("completed")

All tracking helpers are no-ops until init_metrics() has run, so library
users that never enable metrics pay nothing.
"""

import logging
import threading

from prometheus_client import Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)

KEYS_GENERATED: "Counter" = None  # type: ignore
SIGNATURE_VERIFY_FAILURES: "Counter" = None  # type: ignore
VERIFICATION_TRANSITIONS: "Counter" = None  # type: ignore
ACTIVE_VERIFICATIONS: "Gauge" = None  # type: ignore

_metrics_initialized = False
_metrics_lock = threading.Lock()


def init_metrics() -> None:
    """
    Initialize Prometheus metrics (call once at startup).

    Thread-safe via module-level lock.
    """
    global KEYS_GENERATED, SIGNATURE_VERIFY_FAILURES, VERIFICATION_TRANSITIONS, ACTIVE_VERIFICATIONS
    global _metrics_initialized

    with _metrics_lock:
        if _metrics_initialized:
            return

        # labels: kind (identity, one_time)
        KEYS_GENERATED = Counter(
            "devicetrust_keys_generated_total",
            "Total number of key pairs generated",
            labelnames=["kind"],
        )

        SIGNATURE_VERIFY_FAILURES = Counter(
            "devicetrust_signature_verify_failures_total",
            "Total number of signature checks that returned false",
        )

        # labels: state (entered state)
        VERIFICATION_TRANSITIONS = Counter(
            "devicetrust_verification_transitions_total",
            "Total number of verification session state transitions",
            labelnames=["state"],
        )

        ACTIVE_VERIFICATIONS = Gauge(
            "devicetrust_active_verifications",
            "Number of verification sessions not yet completed or cancelled",
        )

        _metrics_initialized = True
        logger.info("Prometheus metrics initialized")


def start_metrics_server(enabled: bool, port: int) -> None:
    """
    Start Prometheus metrics HTTP server in a background thread.

    Args:
        enabled: Whether to start the server (DEVICETRUST_METRICS_ENABLED)
        port: HTTP port for /metrics (DEVICETRUST_METRICS_PORT)
    """
    if not enabled:
        logger.info("Metrics server disabled")
        return

    init_metrics()

    try:
        start_http_server(port, addr="0.0.0.0")
        logger.info(f"Metrics server started on http://0.0.0.0:{port}/metrics")
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")


def track_keys_generated(kind: str, count: int = 1) -> None:
    if KEYS_GENERATED is not None:
        KEYS_GENERATED.labels(kind=kind).inc(count)


def track_verify_failure() -> None:
    if SIGNATURE_VERIFY_FAILURES is not None:
        SIGNATURE_VERIFY_FAILURES.inc()


def track_transition(state: str) -> None:
    """
    Track a verification session entering a state.

    Terminal states also decrement the active session gauge.
    """
    if VERIFICATION_TRANSITIONS is None:
        return
    VERIFICATION_TRANSITIONS.labels(state=state).inc()
    if state in ("completed", "cancelled"):
        ACTIVE_VERIFICATIONS.dec()


def track_session_created() -> None:
    if ACTIVE_VERIFICATIONS is not None:
        ACTIVE_VERIFICATIONS.inc()
