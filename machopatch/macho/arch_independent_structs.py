from ctypes import Structure, sizeof
from typing import TYPE_CHECKING, Any, Dict, Optional, Type

from machopatch.macho.macho_definitions import (
    ByteOrder,
    MachoHeader32BE,
    MachoHeader32LE,
    MachoHeader64BE,
    MachoHeader64LE,
    MachoLoadCommandBE,
    MachoLoadCommandLE,
    RpathCommandBE,
    RpathCommandLE,
)

_STRUCT_BY_BYTE_ORDER = Dict[ByteOrder, Type[Structure]]


class ArchIndependentStructure:
    _32_BIT_STRUCT: Optional[_STRUCT_BY_BYTE_ORDER] = None
    _64_BIT_STRUCT: Optional[_STRUCT_BY_BYTE_ORDER] = None

    @classmethod
    def get_backing_data_layout(
        cls, is_64bit: bool = True, byte_order: ByteOrder = ByteOrder.LITTLE
    ) -> Type[Structure]:
        """The underlying data layout may be different depending on the binary type.
        Args:
            is_64bit: Binary's 64 bitness
            byte_order: The byte order the binary's words are stored in
        Returns:
            ctypes Structure describing the in-file layout
        """
        layouts = cls._64_BIT_STRUCT if is_64bit else cls._32_BIT_STRUCT

        if layouts is None:
            raise ValueError("Undefined struct_type")

        return layouts[byte_order]

    def __init__(self, binary_offset: int, struct_bytes: bytes, backing_layout: Type[Structure]):
        struct = backing_layout.from_buffer_copy(struct_bytes)

        for field_name, *_ in struct._fields_:
            # clone fields from struct to this class
            setattr(self, field_name, getattr(struct, field_name))

        # record size of underlying struct, for when traversing file by structs
        self.sizeof = sizeof(backing_layout)
        # record the location in the binary this struct was parsed from
        self.binary_offset = binary_offset
        self._backing_layout = backing_layout

    if TYPE_CHECKING:
        # GVR suggested to use this pattern to ignore dynamic attribute assignment errors
        def __getattr__(self, key: str) -> Any:
            pass

    def to_bytes(self) -> bytes:
        """Serialize the current field values using the layout (and byte order) the struct was read with."""
        struct = self._backing_layout()
        for field_name, *_ in struct._fields_:
            setattr(struct, field_name, getattr(self, field_name))
        return bytes(struct)

    def __repr__(self) -> str:
        attributes = "\t".join([f"{x}: {getattr(self, x)}" for x in self.__dict__.keys() if not x.startswith("_")])
        rep = f"{self.__class__.__name__} ({attributes})"
        return rep


class MachoHeaderStruct(ArchIndependentStructure):
    _32_BIT_STRUCT = {ByteOrder.LITTLE: MachoHeader32LE, ByteOrder.BIG: MachoHeader32BE}
    _64_BIT_STRUCT = {ByteOrder.LITTLE: MachoHeader64LE, ByteOrder.BIG: MachoHeader64BE}


class MachoLoadCommandStruct(ArchIndependentStructure):
    _32_BIT_STRUCT = {ByteOrder.LITTLE: MachoLoadCommandLE, ByteOrder.BIG: MachoLoadCommandBE}
    _64_BIT_STRUCT = _32_BIT_STRUCT


class RpathCommandStruct(ArchIndependentStructure):
    _32_BIT_STRUCT = {ByteOrder.LITTLE: RpathCommandLE, ByteOrder.BIG: RpathCommandBE}
    _64_BIT_STRUCT = _32_BIT_STRUCT
