from pathlib import Path

DEBIAN = "Debian"
RED_HAT = "RedHat"
OS_RELEASE_FAMILIES = {
    "debian": DEBIAN,
    "ubuntu": DEBIAN,
    "rhel": RED_HAT,
    "fedora": RED_HAT,
    "centos": RED_HAT,
}

SYSTEMD_UNIT_DIRECTORY = Path("/etc/systemd/system")
DEFAULT_DIRECTORY_MODE = 755


def normalize_cpu_arch(arch_specifier: str) -> str:
    """Normalize the string used for the CPU kernel architecture.

    Different systems and registries report the CPU architecture differently. This
    function allows us to have a single location for being able to map back and forth,
    e.g. for comparing the output of `uname -m` with the architecture listed in an OCI
    image index.

    :param arch_specifier: The CPU architecture string returned from commands such as
        `uname -m` or an image manifest.
    :type arch_specifier: str

    :returns: The common specifier used for the given architecture.

    :rtype: str
    """
    return {
        "amd64": "amd64",
        "x86_64": "amd64",
        "arm64": "arm64",
        "aarch64": "arm64",
        "ppc64le": "ppc64le",
        "s390x": "s390x",
        "i386": "386",
        "i686": "386",
    }.get(arch_specifier, arch_specifier)


def platform_architecture(platform: str) -> str:
    """Extract the normalized architecture from a platform such as `linux/arm64`.

    :param platform: An OCI platform string, `os/arch[/variant]`.
    :type platform: str

    :rtype: str
    """
    parts = platform.split("/")
    arch = parts[1] if len(parts) > 1 else parts[0]
    return normalize_cpu_arch(arch)


def linux_family(
    distribution_name: str | None, release_meta: dict[str, str] | None = None
) -> str | None:
    """Map a linux distribution to the family that it belongs to (e.g. Debian, etc.).

    Distributions outside the known names are resolved from the `ID` and `ID_LIKE`
    entries of their os-release data, so derivatives such as Linux Mint or Amazon
    Linux map to the family they are built from.

    :param distribution_name: The name of the linux distribution as reported by the
        pyinfra `LinuxName` fact (e.g. Ubuntu, Debian, Rocky Linux, etc.)
    :type distribution_name: str

    :param release_meta: The os-release data of the distribution, as reported by the
        pyinfra `LinuxDistribution` fact.
    :type release_meta: dict

    :returns: The family that the linux distribution belongs to (e.g. Debian, RedHat,
              etc.), or None when it cannot be determined.

    :rtype: str
    """
    family = {
        "Ubuntu": DEBIAN,
        DEBIAN: DEBIAN,
        "Linux Mint": DEBIAN,
        RED_HAT: RED_HAT,
        "Fedora": RED_HAT,
        "CentOS": RED_HAT,
        "Rocky": RED_HAT,
        "Rocky Linux": RED_HAT,
        "AlmaLinux": RED_HAT,
        "Amazon Linux": RED_HAT,
    }.get(distribution_name or "")
    if family:
        return family
    release_meta = release_meta or {}
    distribution_ids = [
        release_meta.get("ID", ""),
        *release_meta.get("ID_LIKE", "").split(),
    ]
    for distribution_id in distribution_ids:
        family = OS_RELEASE_FAMILIES.get(distribution_id.strip('"').lower())
        if family:
            return family
    return None


def libcap_package(family: str | None) -> str | None:
    """Name of the package that ships setcap/getcap for a distribution family."""
    return {DEBIAN: "libcap2-bin", RED_HAT: "libcap"}.get(family or "")
