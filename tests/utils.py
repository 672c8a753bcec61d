from typing import List, Optional, Tuple

from machopatch.macho import ByteOrder, MachArch, MachoFileType

CPU_TYPE_ARM64 = 0x0100000C
CPU_TYPE_X86 = 7
CPU_SUBTYPE_ARM64_ALL = 0

_MAGIC_FOR_FORMAT = {
    (False, ByteOrder.BIG): MachArch.MH_MAGIC,
    (False, ByteOrder.LITTLE): MachArch.MH_CIGAM,
    (True, ByteOrder.BIG): MachArch.MH_MAGIC_64,
    (True, ByteOrder.LITTLE): MachArch.MH_CIGAM_64,
}


def pack_words(words: List[int], byte_order: ByteOrder) -> bytes:
    return b"".join(w.to_bytes(4, byteorder=byte_order.value) for w in words)


def build_load_command(cmd: int, payload: bytes, byte_order: ByteOrder = ByteOrder.LITTLE) -> bytes:
    """Serialize a load command with the provided (already padded) payload."""
    return pack_words([cmd, 8 + len(payload)], byte_order) + payload


def build_macho(
    is_64bit: bool = True,
    byte_order: ByteOrder = ByteOrder.LITTLE,
    load_commands: Optional[List[bytes]] = None,
    trailing_data: bytes = b"",
    cputype: int = CPU_TYPE_ARM64,
    cpusubtype: int = CPU_SUBTYPE_ARM64_ALL,
    filetype: int = MachoFileType.MH_EXECUTE,
    flags: int = 0x00200085,
    ncmds: Optional[int] = None,
    sizeofcmds: Optional[int] = None,
) -> bytearray:
    """Build a thin Mach-O slice: header, the provided load commands, then trailing_data.
    ncmds and sizeofcmds are derived from load_commands unless explicitly overridden.
    """
    load_commands = load_commands or []
    if ncmds is None:
        ncmds = len(load_commands)
    if sizeofcmds is None:
        sizeofcmds = sum(len(x) for x in load_commands)

    # The magic is stored so that reading the first 4 bytes big-endian yields the MachArch value
    header = _MAGIC_FOR_FORMAT[(is_64bit, byte_order)].to_bytes(4, byteorder="big")
    header += cputype.to_bytes(4, byteorder=byte_order.value, signed=True)
    header += cpusubtype.to_bytes(4, byteorder=byte_order.value, signed=True)
    header += pack_words([filetype, ncmds, sizeofcmds, flags], byte_order)
    if is_64bit:
        # reserved
        header += pack_words([0], byte_order)

    return bytearray(header + b"".join(load_commands) + trailing_data)


def read_word(data: bytes, offset: int, byte_order: ByteOrder = ByteOrder.LITTLE) -> int:
    return int.from_bytes(data[offset : offset + 4], byteorder=byte_order.value)


def header_counters(data: bytes, byte_order: ByteOrder = ByteOrder.LITTLE) -> Tuple[int, int]:
    """Read (ncmds, sizeofcmds) from a Mach-O header."""
    return read_word(data, 16, byte_order), read_word(data, 20, byte_order)
