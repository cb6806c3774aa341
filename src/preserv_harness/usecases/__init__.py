from .builder import BinaryBuilder, BuildError
from .config_models import HarnessConfig
from .wiring import HarnessRuntime, build_runtime

# Usecase exports cover what the CLI and tests compose.
__all__ = ["BinaryBuilder", "BuildError", "HarnessConfig", "HarnessRuntime", "build_runtime"]
