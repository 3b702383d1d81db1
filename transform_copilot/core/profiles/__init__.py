from .models import TargetConfig
from .loader import load_profile, PROFILES_FILE

__all__ = [
    "TargetConfig",
    "load_profile",
    "PROFILES_FILE",
]
