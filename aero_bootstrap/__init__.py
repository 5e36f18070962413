"""Bootstrap orchestration for the Aero cross toolchain and mlibc sysroot."""

from .config import BootstrapConfig
from .models import ProjectPaths
from .pipeline import BootstrapContext, BootstrapPipeline, Stage

__all__ = ["BootstrapConfig", "BootstrapContext", "BootstrapPipeline", "ProjectPaths", "Stage"]
