"""Environment-driven settings and logging setup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

MEMORY_STORE_URL = "memory://"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite:///:memory:"
    ai_delay_min: float = 0.5
    ai_delay_max: float = 0.7
    log_level: str = "INFO"

    @property
    def ai_delay(self) -> Tuple[float, float]:
        low = max(0.0, self.ai_delay_min)
        return low, max(low, self.ai_delay_max)

    @property
    def uses_memory_store(self) -> bool:
        return self.database_url == MEMORY_STORE_URL

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("XOARENA_HOST", "0.0.0.0"),
            port=int(env.get("XOARENA_PORT", "8000")),
            database_url=env.get("XOARENA_DATABASE_URL", "sqlite:///:memory:"),
            ai_delay_min=float(env.get("XOARENA_AI_DELAY_MIN", "0.5")),
            ai_delay_max=float(env.get("XOARENA_AI_DELAY_MAX", "0.7")),
            log_level=env.get("XOARENA_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
