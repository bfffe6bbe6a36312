import mmap
import struct
from typing import Union

from bootimg_errors import FormatError, UnsupportedHeaderVersion


Buffer = Union[bytes, bytearray, memoryview, mmap.mmap]

BOOT_MAGIC = b"ANDROID!"
BOOT_MAGIC_SIZE = 8
BOOT_IMAGE_HEADER_V1_SIZE = 1648
BOOT_IMAGE_HEADER_V2_SIZE = 1660

# magic followed by kernel/ramdisk/second sizes and addresses, tags_addr, page_size
HEADER_VERSION_OFFSET = BOOT_MAGIC_SIZE + 8 * 4
OS_VERSION_OFFSET_V0 = HEADER_VERSION_OFFSET + 4
# v3 dropped the load addresses, second stage and page_size ahead of header_version
OS_VERSION_OFFSET_V3 = HEADER_VERSION_OFFSET - 6 * 4

MAX_HEADER_VERSION = 3

OS_VERSION_OFFSETS = {
    0: OS_VERSION_OFFSET_V0,
    1: OS_VERSION_OFFSET_V0,
    2: OS_VERSION_OFFSET_V0,
    3: OS_VERSION_OFFSET_V3,
}

_U32 = struct.Struct("<I")


def _check_bounds(buf: Buffer, offset: int, size: int) -> None:
    if offset < 0 or offset + size > len(buf):
        raise FormatError(
            f"header field at offset {offset} is outside the mapped {len(buf)} bytes")


def read_u32(buf: Buffer, offset: int) -> int:
    _check_bounds(buf, offset, _U32.size)
    return _U32.unpack_from(buf, offset)[0]


def write_u32(buf: Buffer, offset: int, value: int) -> None:
    _check_bounds(buf, offset, _U32.size)
    _U32.pack_into(buf, offset, value & 0xffffffff)


def has_magic(buf: Buffer) -> bool:
    return len(buf) >= BOOT_MAGIC_SIZE and buf[:BOOT_MAGIC_SIZE] == BOOT_MAGIC


def check_magic(buf: Buffer, name: str = "image") -> None:
    if not has_magic(buf):
        raise FormatError(f"{name} has incorrect magic number, not an android boot image")


def get_header_version(buf: Buffer) -> int:
    return read_u32(buf, HEADER_VERSION_OFFSET)


def check_header_version(buf: Buffer, name: str = "image") -> int:
    header_version = get_header_version(buf)
    if header_version > MAX_HEADER_VERSION:
        raise UnsupportedHeaderVersion(header_version, name)
    return header_version


def resolve_version_offset(buf: Buffer) -> int:
    """Byte offset of the packed os_version field for this header layout"""
    header_version = get_header_version(buf)
    try:
        return OS_VERSION_OFFSETS[header_version]
    except KeyError:
        raise UnsupportedHeaderVersion(header_version) from None


def get_os_version(buf: Buffer) -> int:
    return read_u32(buf, resolve_version_offset(buf))


def set_os_version(buf: Buffer, value: int) -> None:
    write_u32(buf, resolve_version_offset(buf), value)
