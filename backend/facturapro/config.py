# backend/facturapro/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

from .errors import ConfigurationError


@dataclass(frozen=True)
class ClientConfig:
    """Where the Remote Data Service lives and the public key it expects."""

    url: str
    public_key: str
    timeout: float = 10.0

    def __post_init__(self):
        missing = [name for name, value in (("url", self.url), ("public_key", self.public_key)) if not value]
        if missing:
            raise ConfigurationError(f"Remote Data Service is not configured: missing {', '.join(missing)}")

    @classmethod
    def from_env(cls, environ=None) -> "ClientConfig":
        """
        Read FACTURAPRO_URL / FACTURAPRO_PUBLIC_KEY (and optionally
        FACTURAPRO_TIMEOUT). Fails fast with ConfigurationError.
        """
        env = os.environ if environ is None else environ
        url = (env.get("FACTURAPRO_URL") or "").strip()
        public_key = (env.get("FACTURAPRO_PUBLIC_KEY") or "").strip()

        missing = [
            name for name, value in (("FACTURAPRO_URL", url), ("FACTURAPRO_PUBLIC_KEY", public_key))
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing environment variables: {', '.join(missing)}")

        try:
            timeout = float(env.get("FACTURAPRO_TIMEOUT", "10"))
        except ValueError:
            raise ConfigurationError("FACTURAPRO_TIMEOUT must be a number of seconds")

        return cls(url=url.rstrip("/"), public_key=public_key, timeout=timeout)
