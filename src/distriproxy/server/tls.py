"""TLS context creation."""

from __future__ import annotations

import ssl
from pathlib import Path

import structlog

from distriproxy.core.config import TLSSettings
from distriproxy.core.exceptions import TLSConfigError

logger = structlog.get_logger()


def create_ssl_context(tls: TLSSettings) -> ssl.SSLContext | None:
    """Create a server SSL context from certificate files.

    Returns None when TLS is disabled.

    Raises:
        TLSConfigError: If a file is missing or cannot be loaded.
    """
    if not tls.enabled:
        return None

    if not tls.certificate_file or not tls.key_file:
        raise TLSConfigError("TLS enabled but certificate or key not set")

    cert_path = Path(tls.certificate_file)
    key_path = Path(tls.key_file)

    if not cert_path.exists():
        raise TLSConfigError(f"Certificate file not found: {cert_path}")

    if not key_path.exists():
        raise TLSConfigError(f"Key file not found: {key_path}")

    try:
        ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ssl_context.load_cert_chain(str(cert_path), str(key_path))
        ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
    except (ssl.SSLError, OSError) as e:
        raise TLSConfigError(f"Failed to load TLS certificate/key: {e}") from e

    logger.info("TLS context created", cert=str(cert_path))
    return ssl_context
