#!/usr/bin/env python3
"""Set os_version and os_patch_level in an Android boot image header, in place.

Only the packed version field inside the first 1660 bytes of the image (or
block device) is rewritten; everything else is left as is.
"""

import argparse
import contextlib
import fcntl
import logging
import mmap
import os
import stat
import struct
import sys
from typing import Iterator, List, NamedTuple, Optional, Tuple

from bootimg_errors import BootImageError, FormatError, ImageIOError, MappingError
from bootimg_header import (
    BOOT_IMAGE_HEADER_V2_SIZE,
    check_header_version,
    check_magic,
    get_header_version,
    read_u32,
    resolve_version_offset,
    write_u32,
)
from bootimg_version import (
    VersionComponents,
    decode,
    encode,
    merge,
    os_patch_level,
    os_version,
    parse_os_patch_level,
    parse_os_version,
)

_logger = logging.getLogger(__name__)

# _IOR(0x12, 114, size_t) from linux/fs.h
BLKGETSIZE64 = 0x80081272


class PatchReport(NamedTuple):
    path: str
    header_version: int
    offset: int
    current: VersionComponents
    new: VersionComponents
    current_value: int
    new_value: int
    written: bool

    @property
    def changed(self) -> bool:
        return self.current_value != self.new_value

    @property
    def version_changed(self) -> bool:
        return os_version(self.current_value) != os_version(self.new_value)

    @property
    def patch_level_changed(self) -> bool:
        return os_patch_level(self.current_value) != os_patch_level(self.new_value)

    @property
    def version_downgrade(self) -> bool:
        return os_version(self.new_value) < os_version(self.current_value)

    @property
    def patch_level_downgrade(self) -> bool:
        return os_patch_level(self.new_value) < os_patch_level(self.current_value)


def _io_error(message: str, e: OSError) -> ImageIOError:
    return ImageIOError(f"{message}: {e.strerror or e}")


def _target_size(fd: int, path: str) -> int:
    """Size of a regular file or block device; character devices are refused"""
    try:
        st = os.fstat(fd)
    except OSError as e:
        raise _io_error(f"stat {path} failed", e) from e

    if stat.S_ISCHR(st.st_mode):
        raise FormatError(f"{path} is not a block device")

    if not stat.S_ISBLK(st.st_mode):
        return st.st_size

    try:
        buf = fcntl.ioctl(fd, BLKGETSIZE64, bytes(8))
    except OSError as e:
        raise _io_error(f"{path} can't determine block device size", e) from e
    return struct.unpack("Q", buf)[0]


@contextlib.contextmanager
def map_boot_image(path: str, writable: bool = True) -> Iterator[mmap.mmap]:
    """Map the boot image header window of path, shared with the backing storage.

    The magic and header version are validated before the mapping is handed out;
    the mapping is closed on every exit path.
    """
    try:
        fd = os.open(path, os.O_RDWR if writable else os.O_RDONLY)
    except OSError as e:
        raise _io_error(f"open {path} failed", e) from e

    try:
        if _target_size(fd, path) < BOOT_IMAGE_HEADER_V2_SIZE:
            raise FormatError(f"{path} is too small")
        try:
            mm = mmap.mmap(fd, BOOT_IMAGE_HEADER_V2_SIZE,
                           access=mmap.ACCESS_WRITE if writable else mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            raise MappingError(f"mmap {path} failed: {e}") from e
    except BaseException:
        # the error already in flight is the one to report
        try:
            os.close(fd)
        except OSError as e:
            _logger.debug(f"close {path} failed: {e}")
        raise

    try:
        os.close(fd)
    except OSError as e:
        mm.close()
        raise _io_error(f"close {path} failed", e) from e

    try:
        check_magic(mm, path)
        check_header_version(mm, path)
        yield mm
    finally:
        try:
            mm.close()
        except OSError as e:
            raise MappingError(f"munmap failed: {e}") from e


def apply(path: str,
          requested_version: Optional[Tuple[int, int, int]] = None,
          requested_patch_level: Optional[Tuple[int, int]] = None,
          dry_run: bool = False) -> PatchReport:
    """Patch the packed os_version field of the boot image at path.

    None for either request keeps the current value. The field is rewritten and
    flushed only when the packed value actually changes and dry_run is off.
    """
    with map_boot_image(path, writable=not dry_run) as mm:
        header_version = get_header_version(mm)
        offset = resolve_version_offset(mm)
        current_value = read_u32(mm, offset)
        current = decode(current_value)
        _logger.debug(f"{path}: header version {header_version}, "
                      f"os_version field at offset {offset} = 0x{current_value:08x}")

        new = merge(current, requested_version, requested_patch_level)
        new_value = encode(new)
        report = PatchReport(path, header_version, offset, current, new,
                             current_value, new_value, written=False)

        if not report.changed:
            return report

        if report.version_downgrade:
            _logger.warning("warn: new os_version is lower than current")
        if report.patch_level_downgrade:
            _logger.warning("warn: new os_patch_level version is lower than current")

        if dry_run:
            _logger.info(f"{path}: dry run, 0x{new_value:08x} not written")
            return report

        write_u32(mm, offset, new_value)
        try:
            mm.flush()
        except OSError as e:
            raise MappingError(f"msync failed: {e}") from e
        _logger.info(f"{path}: wrote 0x{new_value:08x} at offset {offset}")

    return report._replace(written=True)


def print_report(report: PatchReport) -> None:
    """Print the current and, if different, the new OS version"""
    print(f"Current OS version:\t{report.current}")
    if not report.changed:
        print("The dates are the same. Nothing to be done.")
        return
    print(f"New OS version:\t\t{report.new}")
    if not report.written:
        print("Dry run, image not modified.")


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Change os_version and os_patch_level of an Android boot image in place.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""examples:
  %(prog)s boot.img 14.0.0 2024-03
  %(prog)s boot.img same 2024-03
  %(prog)s /dev/block/by-name/boot_a 13.0.0 same
""")
    parser.add_argument("file", help="Boot image file or block device")
    parser.add_argument("os_version", help='a.b.c (each 0..127), or "same" to keep the current value')
    parser.add_argument("os_patch_level", help='YYYY-MM (2000..2127), or "same" to keep the current value')
    parser.add_argument("--dry-run", action="store_true",
                        help="Report what would change, do not modify the image")
    parser.add_argument("--verbose", "-v", action="count", default=0,
                        help="Increase verbosity (may be repeated)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _make_parser().parse_args(argv)

    logging.basicConfig(
        stream=sys.stderr,
        format="%(message)s",
        level={
            0: logging.WARNING,
            1: logging.INFO,
        }.get(args.verbose, logging.DEBUG),
    )
    _logger.debug(f"CLI arguments: {args}")

    try:
        requested_version = parse_os_version(args.os_version)
        requested_patch_level = parse_os_patch_level(args.os_patch_level)
        report = apply(args.file, requested_version, requested_patch_level, dry_run=args.dry_run)
    except BootImageError as e:
        _logger.error(str(e))
        return 1

    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
