from .loader import load_yaml_config
from .validator import ConfigError, require_unique_names, require_variable

__all__ = ["ConfigError", "load_yaml_config", "require_unique_names", "require_variable"]
