from pyinfra.api import FactBase


class JavaBinary(FactBase):
    """The real path of the java executable, with symlinks resolved."""

    def requires_command(self) -> str:
        return "java"

    def command(self) -> str:
        return 'readlink -f "$(command -v java)"'

    def process(self, output):
        lines = [line.strip() for line in output if line.strip()]
        return lines[0] if lines else None


class FileCapabilities(FactBase):
    """The capability set reported by getcap for a file, if any."""

    def requires_command(self, path) -> str:  # noqa: ARG002
        return "getcap"

    def command(self, path) -> str:
        return f"getcap {path}"

    def process(self, output):
        for line in output:
            _, _, capabilities = line.partition(" ")
            if capabilities.strip():
                return capabilities.strip().lstrip("= ").strip()
        return None
