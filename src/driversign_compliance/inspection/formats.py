"""
driversign_compliance.inspection.formats

Header parsers for the driver binary formats we evaluate.

Responsibilities:
- Identify the platform/format of a driver file from its magic bytes.
- Detect embedded signatures directly from the file structure:
  - PE: Authenticode blob in the security data directory
  - Mach-O: LC_CODE_SIGNATURE load command
- Derive a default driver class when no signing evidence names one.

Parsing works on an in-memory copy of the file; any structural inconsistency
raises `FormatError`, which the inspector reports as `UnreadableArtifact`.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

PE_SIGNATURE = b"PE\x00\x00"
PE32_MAGIC = 0x10B
PE32_PLUS_MAGIC = 0x20B
IMAGE_SUBSYSTEM_NATIVE = 1
IMAGE_DIRECTORY_ENTRY_SECURITY = 4

MACHO_THIN = {
    b"\xfe\xed\xfa\xce": (">", False),
    b"\xce\xfa\xed\xfe": ("<", False),
    b"\xfe\xed\xfa\xcf": (">", True),
    b"\xcf\xfa\xed\xfe": ("<", True),
}
FAT_MAGIC = b"\xca\xfe\xba\xbe"
FAT_MAGIC_64 = b"\xca\xfe\xba\xbf"
# Java class files share FAT_MAGIC; real universal binaries carry only a handful of slices.
MAX_FAT_ARCHS = 30
LC_CODE_SIGNATURE = 0x1D

ELF_MAGIC = b"\x7fELF"
PPD_MAGIC = b"*PPD-Adobe:"
UTF8_BOM = b"\xef\xbb\xbf"


class FormatError(Exception):
    pass


@dataclass(frozen=True, slots=True)
class BinaryFacts:
    platform: str
    format: str
    default_driver_class: str
    # None when the format has no embedded signature (detached signatures only).
    embedded_signature: bool | None


def sniff(data: bytes) -> BinaryFacts:
    """Dispatch on magic bytes. Raises `FormatError` for unknown or corrupt input."""
    if data[:2] == b"MZ":
        return _parse_pe(data)
    head = data[:4]
    if head in MACHO_THIN:
        endian, is_64 = MACHO_THIN[head]
        signed = _macho_has_code_signature(data, 0, endian, is_64)
        return BinaryFacts("macos", "macho", "dext", signed)
    if head in (FAT_MAGIC, FAT_MAGIC_64):
        return _parse_fat(data, is_64=head == FAT_MAGIC_64)
    if head == ELF_MAGIC:
        return BinaryFacts("linux", "elf", "cups_filter", None)
    text = data[3:] if data.startswith(UTF8_BOM) else data
    if text.startswith(PPD_MAGIC):
        return BinaryFacts("linux", "ppd", "ppd", None)
    raise FormatError("unrecognised driver format")


def _parse_pe(data: bytes) -> BinaryFacts:
    try:
        (e_lfanew,) = struct.unpack_from("<I", data, 0x3C)
        if data[e_lfanew : e_lfanew + 4] != PE_SIGNATURE:
            raise FormatError("missing PE signature")
        coff = e_lfanew + 4
        (size_of_optional_header,) = struct.unpack_from("<H", data, coff + 16)
        opt = coff + 20
        (magic,) = struct.unpack_from("<H", data, opt)
        if magic == PE32_MAGIC:
            rva_count_off, dirs_off = 92, 96
        elif magic == PE32_PLUS_MAGIC:
            rva_count_off, dirs_off = 108, 112
        else:
            raise FormatError(f"unknown PE optional header magic 0x{magic:x}")

        (subsystem,) = struct.unpack_from("<H", data, opt + 68)
        (rva_count,) = struct.unpack_from("<I", data, opt + rva_count_off)

        signed = False
        security_off = dirs_off + IMAGE_DIRECTORY_ENTRY_SECURITY * 8
        if rva_count > IMAGE_DIRECTORY_ENTRY_SECURITY and security_off + 8 <= size_of_optional_header:
            # The security directory holds a raw file offset, not an RVA.
            cert_offset, cert_size = struct.unpack_from("<II", data, opt + security_off)
            if cert_offset and cert_size:
                if cert_offset + cert_size > len(data):
                    raise FormatError("certificate table extends past end of file")
                signed = True
    except struct.error as e:
        raise FormatError(f"truncated PE header: {e}") from e

    driver_class = "kernel" if subsystem == IMAGE_SUBSYSTEM_NATIVE else "usermode"
    return BinaryFacts("windows", "pe", driver_class, signed)


def _macho_has_code_signature(data: bytes, base: int, endian: str, is_64: bool) -> bool:
    try:
        ncmds, sizeofcmds = struct.unpack_from(f"{endian}II", data, base + 16)
        offset = base + (32 if is_64 else 28)
        end = offset + sizeofcmds
        if end > len(data):
            raise FormatError("load commands extend past end of file")
        for _ in range(ncmds):
            cmd, cmdsize = struct.unpack_from(f"{endian}II", data, offset)
            if cmdsize < 8 or offset + cmdsize > end:
                raise FormatError(f"corrupt load command at offset {offset}")
            if cmd == LC_CODE_SIGNATURE:
                return True
            offset += cmdsize
    except struct.error as e:
        raise FormatError(f"truncated Mach-O header: {e}") from e
    return False


def _parse_fat(data: bytes, *, is_64: bool) -> BinaryFacts:
    try:
        (nfat_arch,) = struct.unpack_from(">I", data, 4)
        if not 0 < nfat_arch <= MAX_FAT_ARCHS:
            raise FormatError("unrecognised driver format")
        entry_size = 32 if is_64 else 20
        slices_signed: list[bool] = []
        for i in range(nfat_arch):
            entry = 8 + i * entry_size
            if is_64:
                _, _, slice_offset, slice_size = struct.unpack_from(">iiQQ", data, entry)
            else:
                _, _, slice_offset, slice_size = struct.unpack_from(">iiII", data, entry)
            if slice_offset + slice_size > len(data):
                raise FormatError(f"fat slice {i} extends past end of file")
            head = data[slice_offset : slice_offset + 4]
            if head not in MACHO_THIN:
                raise FormatError(f"fat slice {i} is not a Mach-O image")
            endian, slice_is_64 = MACHO_THIN[head]
            slices_signed.append(
                _macho_has_code_signature(data, slice_offset, endian, slice_is_64)
            )
    except struct.error as e:
        raise FormatError(f"truncated fat header: {e}") from e

    # A universal binary counts as signed only if every architecture slice is.
    return BinaryFacts("macos", "macho", "dext", all(slices_signed))
