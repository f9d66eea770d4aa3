# diabetes_service/config.py
# Runtime settings and clinical thresholds. Thresholds are configuration
# inputs; override them through the environment per deployment.

import os


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


# =====================================================
# Service
# =====================================================
ROOT_PATH = os.getenv("ROOT_PATH", "")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
REDIS_PORT = int(os.environ.get("REDIS_PORT", 6379))

# Optional collaborators; unset means "do not check"
USER_SERVICE_URL = os.getenv("USER_SERVICE_URL")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

# =====================================================
# Units
# =====================================================
MMOL_L_TO_MG_DL = 18.0

# =====================================================
# Default target ranges (canonical units)
# =====================================================
DEFAULT_TARGET_RANGES = {
    "glucose": (_float_env("GLUCOSE_TARGET_MIN", 70.0), _float_env("GLUCOSE_TARGET_MAX", 180.0)),
    "hba1c": (_float_env("HBA1C_TARGET_MIN", 4.0), _float_env("HBA1C_TARGET_MAX", 7.0)),
    "exercise": (_float_env("EXERCISE_TARGET_MIN", 30.0), _float_env("EXERCISE_TARGET_MAX", 60.0)),
    "meal": (_float_env("MEAL_TARGET_MIN", 300.0), _float_env("MEAL_TARGET_MAX", 700.0)),
}

# =====================================================
# Technical bounds (validation before persistence)
# =====================================================
GLUCOSE_MAX_MG_DL = _float_env("GLUCOSE_MAX_MG_DL", 1000.0)
HBA1C_MAX_PERCENT = _float_env("HBA1C_MAX_PERCENT", 20.0)

# =====================================================
# Rule thresholds
# =====================================================
EXERCISE_SIGNIFICANT_CHANGE = _float_env("EXERCISE_SIGNIFICANT_CHANGE", 30.0)
MEAL_SUGAR_LIMIT = _float_env("MEAL_SUGAR_LIMIT", 50.0)
MEAL_PROTEIN_MIN = _float_env("MEAL_PROTEIN_MIN", 15.0)
