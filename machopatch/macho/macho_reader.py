from ctypes import sizeof
from dataclasses import dataclass
from typing import Type, TypeVar

from machopatch.logger import machopatch_logger
from machopatch.macho.arch_independent_structs import ArchIndependentStructure, MachoHeaderStruct
from machopatch.macho.macho_definitions import ByteOrder, MachArch, StaticFilePointer

logger = machopatch_logger.getChild(__name__)

AIS = TypeVar("AIS", bound=ArchIndependentStructure)


class MachoParseError(Exception):
    """Base class for errors raised while reading a Mach-O buffer."""


class UnrecognizedFormatError(MachoParseError):
    """Raised when the leading magic does not identify a Mach-O slice."""


class TruncatedInputError(MachoParseError):
    """Raised when a read would run past the end of the buffer."""


@dataclass(frozen=True)
class MachoFormat:
    is_64bit: bool
    byte_order: ByteOrder

    @property
    def header_size(self) -> int:
        """Size of the mach_header (28 bytes) or mach_header_64 (32 bytes)."""
        return sizeof(MachoHeaderStruct.get_backing_data_layout(self.is_64bit, self.byte_order))


# The magic is always read big-endian, so MH_MAGIC means the file itself is big-endian
_FORMAT_FOR_MAGIC = {
    MachArch.MH_MAGIC: MachoFormat(is_64bit=False, byte_order=ByteOrder.BIG),
    MachArch.MH_CIGAM: MachoFormat(is_64bit=False, byte_order=ByteOrder.LITTLE),
    MachArch.MH_MAGIC_64: MachoFormat(is_64bit=True, byte_order=ByteOrder.BIG),
    MachArch.MH_CIGAM_64: MachoFormat(is_64bit=True, byte_order=ByteOrder.LITTLE),
}


def detect_format(binary_data: bytes) -> MachoFormat:
    """Identify the word size and byte order of a Mach-O slice from its magic.

    Raises:
        TruncatedInputError: if the buffer is too short to contain a magic
        UnrecognizedFormatError: if the magic is not one of the four Mach-O magics
    """
    magic = MachoStructReader(binary_data, ByteOrder.BIG).read_uint32()
    macho_format = _FORMAT_FOR_MAGIC.get(magic)  # type: ignore
    if not macho_format:
        raise UnrecognizedFormatError(f"Not a Mach-O slice: unknown magic {hex(magic)}")

    logger.debug(f"magic {hex(magic)}: 64-bit? {macho_format.is_64bit}, byte order {macho_format.byte_order.value}")
    return macho_format


class MachoStructReader:
    """A cursor over a Mach-O buffer which decodes every word in one fixed byte order.
    All reads are bounds-checked against the end of the buffer.
    """

    def __init__(self, binary_data: bytes, byte_order: ByteOrder, is_64bit: bool = False) -> None:
        self._data = binary_data
        self.byte_order = byte_order
        self.is_64bit = is_64bit
        self.offset = StaticFilePointer(0)

    def seek(self, offset: int) -> None:
        self.offset = StaticFilePointer(offset)

    def read_bytes(self, size: int) -> bytes:
        """Read `size` bytes from the cursor and advance past them."""
        end = self.offset + size
        if size < 0 or end > len(self._data):
            raise TruncatedInputError(
                f"Read of {size} bytes at {self.offset} runs past the end of the buffer ({len(self._data)} bytes)"
            )
        data = bytes(self._data[self.offset : end])
        self.offset = end
        return data

    def read_uint32(self) -> int:
        return int.from_bytes(self.read_bytes(4), byteorder=self.byte_order.value, signed=False)

    def read_int32(self) -> int:
        return int.from_bytes(self.read_bytes(4), byteorder=self.byte_order.value, signed=True)

    def read_struct(self, struct_type: Type[AIS]) -> AIS:
        """Read the structure at the cursor, using the layout matching this reader's word size and byte order."""
        backing_layout = struct_type.get_backing_data_layout(self.is_64bit, self.byte_order)
        binary_offset = self.offset
        data = self.read_bytes(sizeof(backing_layout))
        return struct_type(binary_offset, data, backing_layout)
