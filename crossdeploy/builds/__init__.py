"""Build orchestration module.

This module handles:
- The shared dependency registry cache
- Running cargo build/fix inside toolchain containers
- Artifact inspection and manifest generation
"""

from crossdeploy.builds.cache import DependencyRegistryCache
from crossdeploy.builds.service import compile_source, default_artifact_path

__all__ = ["DependencyRegistryCache", "compile_source", "default_artifact_path"]
