from .macho_definitions import (
    ByteOrder,
    MachArch,
    MachoFileType,
    StaticFilePointer,

    MachoHeader32LE, MachoHeader32BE,
    MachoHeader64LE, MachoHeader64BE,
    MachoLoadCommandLE, MachoLoadCommandBE,
    RpathCommandLE, RpathCommandBE,
)

from .macho_load_commands import (
    MachoLoadCommands,
    FILE_OFFSET_BEARING_COMMANDS,
)

from .arch_independent_structs import (
    ArchIndependentStructure,

    MachoHeaderStruct,
    MachoLoadCommandStruct,
    RpathCommandStruct,
)

from .macho_reader import (
    MachoFormat,
    MachoParseError,
    MachoStructReader,
    TruncatedInputError,
    UnrecognizedFormatError,
    detect_format,
)

from .macho_binary import (
    MachoBinary,
    MachoLoadCommandRecord,
    SizeUnderflowError,
)

from .macho_binary_writer import (
    InvalidAddressError,
    MachoBinaryQueuedWrite,
    MachoBinaryWriter,
    add_rpath,
    build_rpath_command,
)
