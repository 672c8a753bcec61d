from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from more_itertools import first_true

from machopatch.logger import machopatch_logger
from machopatch.macho.arch_independent_structs import MachoHeaderStruct, MachoLoadCommandStruct, RpathCommandStruct
from machopatch.macho.macho_definitions import MachoFileType, StaticFilePointer
from machopatch.macho.macho_load_commands import MachoLoadCommands
from machopatch.macho.macho_reader import MachoFormat, MachoParseError, MachoStructReader, detect_format

logger = machopatch_logger.getChild(__name__)

# Every load command begins with a uint32 cmd and a uint32 cmdsize
LOAD_COMMAND_PREFIX_SIZE = 8


class SizeUnderflowError(MachoParseError):
    """Raised when a load command declares a cmdsize smaller than its own 8-byte cmd/cmdsize prefix."""


@dataclass(frozen=True)
class MachoLoadCommandRecord:
    """A load command as it appears in the file. The payload is kept opaque so unknown commands round-trip."""

    cmd: int
    cmdsize: int
    payload: bytes
    binary_offset: StaticFilePointer

    @property
    def command_type(self) -> Optional[MachoLoadCommands]:
        try:
            return MachoLoadCommands(self.cmd)
        except ValueError:
            return None

    def __repr__(self) -> str:
        name = self.command_type.name if self.command_type else hex(self.cmd)
        return f"<MachoLoadCommandRecord {name} @ {self.binary_offset} ({self.cmdsize} bytes)>"


class MachoBinary:
    def __init__(self, binary_data: bytes, path: Optional[Path] = None) -> None:
        """Parse the bytes representing a Mach-O file.
        Parsing only reads from binary_data; it is never modified.
        """
        self._cached_binary = binary_data
        self.path = path

        self.format: MachoFormat = detect_format(binary_data)
        self._reader = MachoStructReader(binary_data, self.format.byte_order, self.format.is_64bit)

        self.header: MachoHeaderStruct = self._reader.read_struct(MachoHeaderStruct)
        self.load_commands: Tuple[MachoLoadCommandRecord, ...] = self._parse_load_commands(self.header.ncmds)

        logger.debug(
            f"{self}: parsed {len(self.load_commands)} load commands, "
            f"declared sizeofcmds {self.header.sizeofcmds}, table ends at {self.load_commands_end_offset}"
        )

    def __repr__(self) -> str:
        return f"<MachoBinary binary={self.path}>"

    @property
    def is_64bit(self) -> bool:
        return self.format.is_64bit

    @property
    def file_type(self) -> Optional[MachoFileType]:
        try:
            return MachoFileType(self.header.filetype)
        except ValueError:
            return None

    def _parse_load_commands(self, ncmds: int) -> Tuple[MachoLoadCommandRecord, ...]:
        """Read exactly `ncmds` load commands, beginning directly after the Mach-O header.
        The table is trusted to match sizeofcmds; that invariant is only re-established on write.

        Args:
            ncmds: Number of load commands to parse, as declared by the header's ncmds field
        """
        load_commands: List[MachoLoadCommandRecord] = []
        for _ in range(ncmds):
            load_command = self._reader.read_struct(MachoLoadCommandStruct)
            if load_command.cmdsize < LOAD_COMMAND_PREFIX_SIZE:
                raise SizeUnderflowError(
                    f"Load command {hex(load_command.cmd)} @ {StaticFilePointer(load_command.binary_offset)} "
                    f"declares cmdsize {load_command.cmdsize}"
                )

            payload = self._reader.read_bytes(load_command.cmdsize - LOAD_COMMAND_PREFIX_SIZE)
            load_commands.append(
                MachoLoadCommandRecord(
                    cmd=load_command.cmd,
                    cmdsize=load_command.cmdsize,
                    payload=payload,
                    binary_offset=StaticFilePointer(load_command.binary_offset),
                )
            )
        return tuple(load_commands)

    @property
    def load_commands_end_offset(self) -> StaticFilePointer:
        """File offset directly after the last load command."""
        return StaticFilePointer(self.format.header_size + sum(x.cmdsize for x in self.load_commands))

    def get_bytes(self, offset: StaticFilePointer, size: Optional[int] = None) -> bytes:
        """Copy bytes from the slice, from `offset` through `size` bytes or the end of the slice."""
        end = None if size is None else offset + size
        return bytes(self._cached_binary[offset:end])

    def command_with_type(self, cmd: int) -> Optional[MachoLoadCommandRecord]:
        """Return the first load command with the provided tag, or None if the binary has no such command."""
        return first_true(self.load_commands, pred=lambda x: x.cmd == cmd)

    def commands_with_type(self, cmd: int) -> List[MachoLoadCommandRecord]:
        return [x for x in self.load_commands if x.cmd == cmd]

    def rpaths(self) -> List[str]:
        """Read the path of each LC_RPATH command, using the path offset each command declares.
        Commands whose declared offset does not land inside the command are skipped.

        Note: LC_RPATH commands inserted by this library declare a path offset of 16 but store the path at byte 12,
        so their paths are read without the first 4 bytes.
        """
        paths = []
        for command in self.commands_with_type(MachoLoadCommands.LC_RPATH):
            # Too short to hold a path offset
            if len(command.payload) < 4:
                continue

            self._reader.seek(command.binary_offset)
            rpath_command = self._reader.read_struct(RpathCommandStruct)
            if not LOAD_COMMAND_PREFIX_SIZE <= rpath_command.path_offset < command.cmdsize:
                logger.debug(f"{command} has out-of-bounds path offset {rpath_command.path_offset}")
                continue

            path_bytes = command.payload[rpath_command.path_offset - LOAD_COMMAND_PREFIX_SIZE :]
            paths.append(path_bytes.split(b"\x00", 1)[0].decode("utf8", errors="replace"))
        return paths

    def insert_rpath_cmd(self, rpath: str) -> "MachoBinary":
        """Add an LC_RPATH load command after the last load command, returning a modified binary.
        Note: This will invalidate the binary's code signature, if present, and does not adjust the file offsets
        held by other load commands.
        """
        from .macho_binary_writer import MachoBinaryWriter

        writer = MachoBinaryWriter(self)
        with writer:
            writer.insert_rpath_cmd(rpath)
        return MachoBinary(writer.modified_binary_data, self.path)
