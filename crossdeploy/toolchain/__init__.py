"""Toolchain management module.

This module handles:
- Loading and validating toolchain specs
- Fingerprinting specs into content-addressed image tags
- Building toolchain images stage by stage with Docker
- Cataloging built images
- Advisory ABI and source availability checks
"""

from crossdeploy.toolchain.abi import check_abi_consistency
from crossdeploy.toolchain.fingerprint import fingerprint_spec, image_tag
from crossdeploy.toolchain.io import (
    get_toolchain_spec,
    list_toolchain_specs,
    load_toolchain_spec,
)
from crossdeploy.toolchain.models import ToolchainImageRecord
from crossdeploy.toolchain.schema import ToolchainSpec
from crossdeploy.toolchain.service import (
    ensure_image,
    get_image,
    image_lock,
    list_images,
    remove_image,
)

__all__ = [
    "ToolchainImageRecord",
    "ToolchainSpec",
    "check_abi_consistency",
    "ensure_image",
    "fingerprint_spec",
    "get_image",
    "get_toolchain_spec",
    "image_lock",
    "image_tag",
    "list_images",
    "list_toolchain_specs",
    "load_toolchain_spec",
    "remove_image",
]
