from ctypes import BigEndianStructure, LittleEndianStructure, c_int32, c_uint32
from enum import Enum, IntEnum
from typing import TypeVar

_BasePointerT = TypeVar("_BasePointerT", bound="_BasePointer")


class _BasePointer(int):
    def __add__(self: _BasePointerT, other: int) -> _BasePointerT:
        return type(self)(super().__add__(other))

    def __sub__(self: _BasePointerT, other: int) -> _BasePointerT:
        return self.__class__(super().__sub__(other))

    def __str__(self) -> str:
        return hex(self)

    def __repr__(self) -> str:
        return hex(self)


class StaticFilePointer(_BasePointer):
    """A pointer analogous to a file offset within the Mach-O
    """

    def __str__(self) -> str:
        return f"Phys[{super().__str__()}]"

    def __repr__(self) -> str:
        return f"Phys[{super().__repr__()}]"


class MachArch(IntEnum):
    """Magic values, as read from the first 4 bytes of the file in big-endian order"""

    MH_MAGIC = 0xFEEDFACE
    MH_CIGAM = 0xCEFAEDFE
    MH_MAGIC_64 = 0xFEEDFACF
    MH_CIGAM_64 = 0xCFFAEDFE


class ByteOrder(Enum):
    """Byte order of the words in a Mach-O slice.
    The value can be passed directly as the `byteorder` of int.from_bytes() / int.to_bytes().
    """

    LITTLE = "little"
    BIG = "big"


class MachoFileType(IntEnum):
    MH_OBJECT = 1  # relocatable object file
    MH_EXECUTE = 2  # demand paged executable file
    MH_FVMLIB = 3  # fixed VM shared library file
    MH_CORE = 4  # core file
    MH_PRELOAD = 5  # preloaded executable file
    MH_DYLIB = 6  # dynamically bound shared library
    MH_DYLINKER = 7  # dynamic link editor
    MH_BUNDLE = 8  # dynamically bound bundle file
    MH_DYLIB_STUB = 9  # shared library stub for static linking only, no section contents
    MH_DSYM = 10  # shared library stub for static
    MH_KEXT_BUNDLE = 11  # x86_64 kext


_MACHO_HEADER_32_FIELDS = [
    ("magic", c_uint32),
    ("cputype", c_int32),
    ("cpusubtype", c_int32),
    ("filetype", c_uint32),
    ("ncmds", c_uint32),
    ("sizeofcmds", c_uint32),
    ("flags", c_uint32),
]

_MACHO_HEADER_64_FIELDS = [
    *_MACHO_HEADER_32_FIELDS,
    ("reserved", c_uint32),
]

_MACHO_LOAD_COMMAND_FIELDS = [("cmd", c_uint32), ("cmdsize", c_uint32)]

_RPATH_COMMAND_FIELDS = [
    *_MACHO_LOAD_COMMAND_FIELDS,
    # Offset of the path string, measured from the start of the load command
    ("path_offset", c_uint32),
]


class MachoHeader32LE(LittleEndianStructure):
    _fields_ = _MACHO_HEADER_32_FIELDS


class MachoHeader32BE(BigEndianStructure):
    _fields_ = _MACHO_HEADER_32_FIELDS


class MachoHeader64LE(LittleEndianStructure):
    _fields_ = _MACHO_HEADER_64_FIELDS


class MachoHeader64BE(BigEndianStructure):
    _fields_ = _MACHO_HEADER_64_FIELDS


class MachoLoadCommandLE(LittleEndianStructure):
    _fields_ = _MACHO_LOAD_COMMAND_FIELDS


class MachoLoadCommandBE(BigEndianStructure):
    _fields_ = _MACHO_LOAD_COMMAND_FIELDS


class RpathCommandLE(LittleEndianStructure):
    """Python representation of struct rpath_command

    Definition found in <mach-o/loader.h>
    """

    _fields_ = _RPATH_COMMAND_FIELDS


class RpathCommandBE(BigEndianStructure):
    _fields_ = _RPATH_COMMAND_FIELDS
