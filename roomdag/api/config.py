"""Server configuration, read from the environment."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple
import os


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))

    @staticmethod
    def from_env(environ: Optional[Mapping[str, str]] = None) -> 'ServerConfig':
        """
        ROOMDAG_HOST, ROOMDAG_PORT, ROOMDAG_CORS_ORIGINS (comma separated).
        Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        defaults = ServerConfig()

        origins = env.get("ROOMDAG_CORS_ORIGINS")
        return ServerConfig(
            host=env.get("ROOMDAG_HOST", defaults.host),
            port=int(env.get("ROOMDAG_PORT", defaults.port)),
            cors_origins=(
                tuple(o.strip() for o in origins.split(",") if o.strip())
                if origins else defaults.cors_origins
            ),
        )
