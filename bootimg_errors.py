class BootImageError(Exception):
    """Base class for every fatal boot image error"""


class UsageError(BootImageError):
    """Command line argument has the wrong shape"""


class ValidationError(BootImageError, ValueError):
    """Argument is well formed but out of range"""


class ImageIOError(BootImageError):
    """Opening or sizing the target failed"""


class FormatError(BootImageError, ValueError):
    """Target is not a boot image this tool can patch"""


class UnsupportedHeaderVersion(FormatError):
    def __init__(self, header_version: int, name: str = "image"):
        super().__init__(f"{name} unsupported header version ({header_version})")
        self.header_version = header_version


class MappingError(BootImageError):
    """mmap, flush or unmap failed"""
