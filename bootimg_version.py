import re
from typing import NamedTuple, Optional, Tuple

from bootimg_errors import UsageError, ValidationError


PRESERVE = "same"

OS_PATCH_LEVEL_BITS = 11
OS_PATCH_LEVEL_MASK = (1 << OS_PATCH_LEVEL_BITS) - 1
OS_VERSION_MASK = (1 << 21) - 1

YEAR_BASE = 2000
YEAR_MAX = YEAR_BASE + 0x7f
COMPONENT_MAX = 0x7f

_OS_VERSION_RE = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})")
_OS_PATCH_LEVEL_RE = re.compile(r"([0-9]{4})-([0-9]{2})")


class VersionComponents(NamedTuple):
    """Component view of the packed os_version header field"""
    major: int
    minor: int
    patch: int
    year: int
    month: int

    def version_string(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def patch_level_string(self) -> str:
        return f"{self.year}-{self.month:02d}"

    def __str__(self) -> str:
        return f"{self.version_string()} {self.patch_level_string()}"


def os_version(value: int) -> int:
    """Upper 21 bits, comparable as a whole against another os_version"""
    return (value >> OS_PATCH_LEVEL_BITS) & OS_VERSION_MASK


def os_patch_level(value: int) -> int:
    """Lower 11 bits, comparable as a whole against another os_patch_level"""
    return value & OS_PATCH_LEVEL_MASK


def decode(value: int) -> VersionComponents:
    """Split a packed header value into a.b.c and year/month"""
    version = os_version(value)
    patch_level = os_patch_level(value)
    return VersionComponents(
        major=(version >> 14) & 0x7f,
        minor=(version >> 7) & 0x7f,
        patch=version & 0x7f,
        year=(patch_level >> 4) + YEAR_BASE,
        month=patch_level & 0xf,
    )


def encode(v: VersionComponents) -> int:
    """Pack components back into 32 bits. Fields are masked, not range checked."""
    version = ((v.major & 0x7f) << 14) | ((v.minor & 0x7f) << 7) | (v.patch & 0x7f)
    patch_level = (((v.year - YEAR_BASE) & 0x7f) << 4) | (v.month & 0xf)
    return (version << OS_PATCH_LEVEL_BITS) | patch_level


def merge(current: VersionComponents,
          version: Optional[Tuple[int, int, int]] = None,
          patch_level: Optional[Tuple[int, int]] = None) -> VersionComponents:
    """Replace the requested halves of current, None keeps the current value"""
    new = current
    if version is not None:
        major, minor, patch = version
        new = new._replace(major=major, minor=minor, patch=patch)
    if patch_level is not None:
        year, month = patch_level
        new = new._replace(year=year, month=month)
    return new


def parse_os_version(text: str) -> Optional[Tuple[int, int, int]]:
    """Parse 'a.b.c' (or 'same') from the command line"""
    if text == PRESERVE:
        return None

    match = _OS_VERSION_RE.fullmatch(text)
    if not match:
        raise UsageError(f"Incorrect os_version '{text}'. Format: a.b.c")

    a, b, c = (int(g) for g in match.groups())
    # 7 bits allocated for each field
    if not (a <= COMPONENT_MAX and b <= COMPONENT_MAX and c <= COMPONENT_MAX):
        raise ValidationError(
            f"Incorrect os_version '{text}'. Each component must be 0..{COMPONENT_MAX}")
    return a, b, c


def parse_os_patch_level(text: str) -> Optional[Tuple[int, int]]:
    """Parse 'YYYY-MM' (or 'same') from the command line"""
    if text == PRESERVE:
        return None

    match = _OS_PATCH_LEVEL_RE.fullmatch(text)
    if not match:
        raise ValidationError(f"Incorrect os_patch_level '{text}'. Format: YYYY-MM")

    year, month = int(match.group(1)), int(match.group(2))
    if not (YEAR_BASE <= year <= YEAR_MAX):
        raise ValidationError(f"Incorrect year: {year} ({YEAR_BASE} <= year <= {YEAR_MAX})")
    if not (1 <= month <= 12):
        raise ValidationError(f"Incorrect month: {month} (01 <= month <= 12)")
    return year, month
