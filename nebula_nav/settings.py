import logging
import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ValidationError

from .gist import DEFAULT_API_BASE

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "data_dir": "NEBULA_DATA_DIR",
    "frontend_dir": "NEBULA_FRONTEND_DIR",
    "host": "NEBULA_HOST",
    "port": "NEBULA_PORT",
    "gist_api": "NEBULA_GIST_API",
    "http_timeout": "NEBULA_HTTP_TIMEOUT",
    "log_level": "NEBULA_LOG_LEVEL",
}


class Settings(BaseModel):
    data_dir: Path = Path("nebula_data")
    frontend_dir: Path = Path("frontend")
    host: str = "127.0.0.1"
    port: int = 8765
    gist_api: str = DEFAULT_API_BASE
    http_timeout: float = 10.0
    log_level: str = "info"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``NEBULA_*`` variables.

        Values that do not validate are dropped with a warning so the
        default is used instead.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, str] = {}
        for field, env_var in ENV_OVERRIDES.items():
            raw = environ.get(env_var)
            if raw is not None and raw.strip():
                values[field] = raw.strip()
        while True:
            try:
                return cls.model_validate(values)
            except ValidationError as exc:
                bad = {str(err["loc"][0]) for err in exc.errors() if err["loc"]} & set(values)
                if not bad:
                    raise
                for field in bad:
                    logger.warning(
                        "ignoring invalid %s=%r", ENV_OVERRIDES[field], values.pop(field)
                    )
