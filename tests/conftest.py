import struct

import pytest

from bootimg_header import BOOT_IMAGE_HEADER_V2_SIZE, BOOT_MAGIC, HEADER_VERSION_OFFSET, OS_VERSION_OFFSETS
from bootimg_version import VersionComponents, encode


def build_header(header_version=2, components=None, magic=BOOT_MAGIC, size=BOOT_IMAGE_HEADER_V2_SIZE):
    """Synthetic boot image header with a recognizable filler pattern"""
    data = bytearray((i * 7) & 0xff for i in range(size))
    data[:len(magic)] = magic
    struct.pack_into("<I", data, HEADER_VERSION_OFFSET, header_version)
    if components is not None and header_version in OS_VERSION_OFFSETS:
        struct.pack_into("<I", data, OS_VERSION_OFFSETS[header_version], encode(components))
    return data


@pytest.fixture
def make_image(tmp_path):
    def _make(header_version=2, components=VersionComponents(1, 0, 0, 2023, 6), **kwargs):
        path = tmp_path / f"boot_v{header_version}.img"
        path.write_bytes(build_header(header_version, components, **kwargs))
        return path
    return _make
