"""crossdeploy - Cross-compile and deploy tooling for embedded ARM boards.

This package builds version-pinned cross-compilation toolchain images,
compiles a target application inside them, and ships the resulting binary
to a development board over SSH.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
