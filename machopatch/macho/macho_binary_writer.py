from ctypes import c_uint32, c_uint64, sizeof
from dataclasses import dataclass
from types import TracebackType
from typing import List, Optional, Type, Union

from machopatch.logger import machopatch_logger
from machopatch.macho.arch_independent_structs import MachoHeaderStruct, RpathCommandStruct
from machopatch.macho.macho_binary import LOAD_COMMAND_PREFIX_SIZE, MachoBinary
from machopatch.macho.macho_definitions import ByteOrder, StaticFilePointer
from machopatch.macho.macho_load_commands import FILE_OFFSET_BEARING_COMMANDS, MachoLoadCommands

logger = machopatch_logger.getChild(__name__)

# cmdsize of every inserted command is rounded up to this boundary
LOAD_COMMAND_ALIGNMENT = 8
# Value written to rpath_command.path.offset of every inserted LC_RPATH
RPATH_PATH_OFFSET = 16


def align_up(value: int, alignment: int = LOAD_COMMAND_ALIGNMENT) -> int:
    return (value + alignment - 1) & ~(alignment - 1)


def build_rpath_command(rpath: str, byte_order: ByteOrder = ByteOrder.LITTLE) -> bytes:
    """Serialize an LC_RPATH load command carrying the provided path.

    The command is laid out as cmd, cmdsize, path offset, the NUL-terminated path, then zero padding
    up to cmdsize. The path offset field is always RPATH_PATH_OFFSET.
    cmdsize is 8 + (4 + len(path) + 1), rounded up to a multiple of 8.

    Raises:
        ValueError: if the path contains a NUL byte or cannot be encoded as UTF-8
    """
    if "\x00" in rpath:
        raise ValueError(f"rpath may not contain a NUL byte: {rpath!r}")
    rpath_bytes = bytes(rpath, "utf8")

    # The path offset field, the path, and its NUL terminator
    payload_length = sizeof(c_uint32) + len(rpath_bytes) + 1

    load_cmd = RpathCommandStruct.get_backing_data_layout(byte_order=byte_order)()
    load_cmd.cmd = MachoLoadCommands.LC_RPATH
    load_cmd.cmdsize = align_up(LOAD_COMMAND_PREFIX_SIZE + payload_length)
    load_cmd.path_offset = RPATH_PATH_OFFSET

    command = bytearray(bytes(load_cmd))
    command += rpath_bytes + b"\x00"
    # Zero-pad to cmdsize
    command += bytearray(load_cmd.cmdsize - len(command))
    return bytes(command)


class InvalidAddressError(Exception):
    """Raised when a queued write falls outside the binary."""


@dataclass
class MachoBinaryQueuedWrite:
    file_offset: StaticFilePointer
    bytes_to_write: bytes


class MachoBinaryWriter:
    """Queue load commands to append to a binary's load command table, and overwrites of existing bytes.
    The queued edits are applied when the context manager exits, producing modified_binary_data.
    A writer may be entered again; later commands are appended after the ones it already inserted.

    Note: Every byte after the load command table shifts by the size of the inserted commands.
    File offsets held by other load commands (segments, symbol tables, code signature, ...) are NOT adjusted.
    """

    def __init__(self, binary: MachoBinary) -> None:
        self.binary = binary
        self.modified_binary_data = bytearray(binary.get_bytes(StaticFilePointer(0)))
        self.queued_commands: List[bytes] = []
        self.queued_writes: List[MachoBinaryQueuedWrite] = []

        self.ncmds = binary.header.ncmds
        self.sizeofcmds = binary.header.sizeofcmds
        self.load_commands_end_offset = binary.load_commands_end_offset

    def __enter__(self) -> "MachoBinaryWriter":
        return self

    def __exit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        if exc_type:
            logger.debug(
                f"Discarding {len(self.queued_commands)} queued load commands and {len(self.queued_writes)} "
                f"queued writes after {exc_type.__name__}"
            )
            self._discard_queued_commands()
            self.queued_writes = []
            return

        insert_offset = self.load_commands_end_offset
        # Everything past the load command table moves down by the size of the new commands
        trailing_data = bytes(self.modified_binary_data[insert_offset:])
        new_commands = b"".join(self.queued_commands)
        self.modified_binary_data[insert_offset:] = new_commands + trailing_data

        for write in self.queued_writes:
            file_offset = write.file_offset
            if file_offset >= insert_offset:
                file_offset += len(new_commands)
            self.modified_binary_data[file_offset : file_offset + len(write.bytes_to_write)] = write.bytes_to_write
        # The header counters always reflect the table, even if a queued write touched them
        self._write_header_counters()

        logger.debug(
            f"Inserted {len(self.queued_commands)} load commands ({len(new_commands)} bytes) at {insert_offset}, "
            f"shifted {len(trailing_data)} trailing bytes, applied {len(self.queued_writes)} writes"
        )
        if self.queued_commands:
            self._warn_about_stale_offsets(trailing_data)

        self.load_commands_end_offset = StaticFilePointer(insert_offset + len(new_commands))
        self.queued_commands = []
        self.queued_writes = []

    def _discard_queued_commands(self) -> None:
        for command in self.queued_commands:
            self.ncmds -= 1
            self.sizeofcmds -= len(command)
        self.queued_commands = []

    def _write_header_counters(self) -> None:
        """Re-serialize mh_header->ncmds and mh_header->sizeofcmds in the byte order the header was read with."""
        macho_format = self.binary.format
        header_layout = MachoHeaderStruct.get_backing_data_layout(macho_format.is_64bit, macho_format.byte_order)

        for field_name, value in [("ncmds", self.ncmds), ("sizeofcmds", self.sizeofcmds)]:
            # Each field is located at the binary head, plus the offset of the field into the mh_header structure
            field_offset = getattr(header_layout, field_name).offset
            field_bytes = value.to_bytes(sizeof(c_uint32), byteorder=macho_format.byte_order.value)
            self.modified_binary_data[field_offset : field_offset + len(field_bytes)] = field_bytes

    def _warn_about_stale_offsets(self, trailing_data: bytes) -> None:
        if self.binary.command_with_type(MachoLoadCommands.LC_CODE_SIGNATURE):
            logger.warning(f"{self.binary} is code signed. The code signature is no longer valid")

        if not trailing_data:
            return
        offset_bearing = [x for x in self.binary.load_commands if x.cmd in FILE_OFFSET_BEARING_COMMANDS]
        if offset_bearing:
            logger.warning(
                f"{len(offset_bearing)} load commands hold file offsets past the load command table. "
                f"These were not adjusted for the inserted bytes: {offset_bearing}"
            )

    def insert_load_command(self, command_bytes: bytes) -> None:
        """Enqueue a serialized load command to be appended after the last load command.
        This will increase mh_header->ncmds by 1, and mh_header->sizeofcmds by the size of the new load command.
        """
        if len(command_bytes) < LOAD_COMMAND_PREFIX_SIZE or len(command_bytes) % LOAD_COMMAND_ALIGNMENT:
            raise ValueError(f"Load command size must be a multiple of {LOAD_COMMAND_ALIGNMENT}: {len(command_bytes)}")

        self.queued_commands.append(command_bytes)
        self.ncmds += 1
        self.sizeofcmds += len(command_bytes)

    def insert_rpath_cmd(self, rpath: str, byte_order: ByteOrder = ByteOrder.LITTLE) -> int:
        """Enqueue an LC_RPATH load command for the provided path. Returns the command's cmdsize."""
        rpath_command = build_rpath_command(rpath, byte_order)
        self.insert_load_command(rpath_command)
        return len(rpath_command)

    def write_bytes(self, data: bytes, file_offset: int) -> None:
        """Enqueue an overwrite of the bytes at file_offset.
        The offset is measured before this batch's load commands are inserted. Writes past the load command table
        follow the data they target when it shifts down.
        Note: This will invalidate the binary's code signature, if present.
        """
        end_offset = file_offset + len(data)
        if file_offset < 0 or end_offset > len(self.modified_binary_data):
            raise InvalidAddressError(
                f"Write of {len(data)} bytes at {hex(file_offset)} is outside the binary "
                f"({len(self.modified_binary_data)} bytes)"
            )
        if file_offset < self.load_commands_end_offset < end_offset:
            raise InvalidAddressError(
                f"Write of {len(data)} bytes at {hex(file_offset)} straddles the end of the load commands "
                f"({self.load_commands_end_offset})"
            )

        self.queued_writes.append(
            MachoBinaryQueuedWrite(file_offset=StaticFilePointer(file_offset), bytes_to_write=bytes(data))
        )

    def write_word(self, word: Union[c_uint32, c_uint64], file_offset: int) -> None:
        """Enqueue a write of the provided word, encoded in the binary's byte order."""
        word_bytes = word.value.to_bytes(length=sizeof(word), byteorder=self.binary.format.byte_order.value)
        self.write_bytes(word_bytes, file_offset)


def add_rpath(binary_data: bytearray, rpath: str, match_source_byte_order: bool = False) -> int:
    """Append an LC_RPATH load command to the Mach-O slice in binary_data, modifying it in place.
    Returns the cmdsize of the inserted command; binary_data grows by exactly this many bytes.

    The header and the full load command table are parsed before anything is written, so binary_data is left
    unchanged if any error is raised.

    By default, the new command is always encoded little-endian, whatever the byte order of the slice. Pass
    match_source_byte_order to encode it in the slice's own byte order instead. The header counters are always
    written in the slice's byte order.

    Raises:
        UnrecognizedFormatError: binary_data is not a Mach-O slice
        TruncatedInputError: the header or a load command runs past the end of binary_data
        SizeUnderflowError: a load command declares a cmdsize smaller than 8
        ValueError: rpath contains a NUL byte or cannot be encoded as UTF-8
    """
    binary = MachoBinary(binary_data)
    byte_order = binary.format.byte_order if match_source_byte_order else ByteOrder.LITTLE

    writer = MachoBinaryWriter(binary)
    with writer:
        cmdsize = writer.insert_rpath_cmd(rpath, byte_order)

    binary_data[:] = writer.modified_binary_data
    return cmdsize
