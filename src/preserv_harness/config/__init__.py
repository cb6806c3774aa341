from .loader import DEFAULT_CONFIG_PATH, load_config

# Config exports are intentionally small.
__all__ = ["DEFAULT_CONFIG_PATH", "load_config"]
