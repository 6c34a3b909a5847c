"""Advisory ABI consistency checks for toolchain specs.

Nothing here runs during a build: a spec whose flags disagree still builds
(and typically fails in the libc or compiler stage). These checks back the
`toolchain check` command so mismatches can be spotted before spending an
hour on an image build.
"""

from crossdeploy.toolchain.schema import ToolchainSpec

HARD_FLOAT_SUFFIX = "hf"


def _configure_value(spec: ToolchainSpec, option: str) -> str | None:
    value: str | None = None
    prefix = f"{option}="
    for flag in spec.compiler_configure_flags:
        if flag.startswith(prefix):
            value = flag[len(prefix) :]
    return value


def check_abi_consistency(spec: ToolchainSpec) -> list[str]:
    """Return findings where the spec's ABI-related fields disagree.

    Args:
        spec: ToolchainSpec to inspect.

    Returns:
        Human-readable findings; empty when nothing looks inconsistent.
    """
    findings: list[str] = []
    float_abi = spec.float_abi
    hard = float_abi == "hard"

    for field_name in ("target_triple", "gcc_triple", "pkg_config_triple"):
        triple = getattr(spec, field_name)
        if triple.endswith(HARD_FLOAT_SUFFIX) != hard:
            findings.append(
                f"{field_name} '{triple}' does not match float ABI '{float_abi}'"
            )

    configured_float = _configure_value(spec, "--with-float")
    if configured_float is not None and configured_float != float_abi:
        findings.append(
            f"compiler configured --with-float={configured_float} but target "
            f"flags request -mfloat-abi={float_abi}"
        )

    configured_fpu = _configure_value(spec, "--with-fpu")
    if configured_fpu is not None and spec.fpu is not None and configured_fpu != spec.fpu:
        findings.append(
            f"compiler configured --with-fpu={configured_fpu} but target flags "
            f"request -mfpu={spec.fpu}"
        )

    if hard and spec.fpu is None:
        findings.append("hard-float ABI requested without an -mfpu flag")

    if spec.debian_arch_name == "armhf" and not hard:
        findings.append("Debian arch 'armhf' requires the hard-float ABI")
    if spec.debian_arch_name == "armel" and hard:
        findings.append("Debian arch 'armel' uses the soft-float ABI")

    return findings


__all__ = ["check_abi_consistency"]
