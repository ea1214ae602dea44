import os

from .dj1948_models import OnInvalidRegime


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


ON_INVALID_REGIME = OnInvalidRegime(os.getenv("DJ1948_ON_INVALID_REGIME", OnInvalidRegime.ZERO_CREDITS.value))
CSV_BOM = _flag("DJ1948_CSV_BOM")
LOG_LEVEL = os.getenv("DJ1948_LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("DJ1948_CORS_ORIGINS", "*").split(",") if o.strip()]
