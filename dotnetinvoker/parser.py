"""
Part of dotnetinvoker

PE side of a .NET assembly: CLR (Cor20) header, metadata extraction and method body reading.

The following references were used:
    Erik Pistelli's .NET file format documentation
        https://www.ntcore.com/files/dotnetformat.htm
    CLI specification (ECMA-335 standard), Partition II 25.3.3
        https://www.ecma-international.org/publications/files/ECMA-ST/ECMA-335.pdf
"""

from __future__ import annotations

import os
import logging
from struct import unpack, error as StructError
from pathlib import PurePath
from typing import Optional, Union

from pefile import PE, DIRECTORY_ENTRY, PEFormatError

from .logger import get_logger
from .errors import CLRFormatError, DecodeError
from .metadata import MetadataReader
from .model import Struct
from .decoder import parse_method_header
from .constants import MAX_METHOD_HEADER_SIZE


PathLike = Union[str, bytes, os.PathLike, PurePath]

CLR_HEADER_FORMAT = '<IHHIIIIIIIIIIIIIIII'
CLR_HEADER_SIZE = 72


class DotNetPEParser(PE):
    def __init__(self, file_ref: PathLike, *args, log_level: int = logging.INFO, **kwargs):
        if isinstance(file_ref, bytes):
            super().__init__(data=file_ref, *args, **kwargs)
        else:
            super().__init__(name=file_ref, *args, **kwargs)

        self.logger = get_logger('extended_pe_logger', level=log_level)

        if not self.is_dotnet_file():
            raise CLRFormatError('File is not a .NET assembly.')

        self.clr_header = self.get_clr_header()
        self.metadata = MetadataReader(self.get_metadata_bytes(), log_level=log_level)

    def is_dotnet_file(self) -> bool:
        """
        Check if the file is a .NET assembly
        """
        result = False
        dotnet_data_dir = DIRECTORY_ENTRY['IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR']

        try:
            if dotnet_data_dir < self.OPTIONAL_HEADER.NumberOfRvaAndSizes and \
                    self.OPTIONAL_HEADER.DATA_DIRECTORY[dotnet_data_dir].VirtualAddress != 0:  # pylint: disable=E1101
                result = True
        except (IndexError, AttributeError):
            result = False

        return result

    def get_clr_header(self) -> Struct.ClrHeader:
        clr_header_dir = self.OPTIONAL_HEADER.DATA_DIRECTORY[DIRECTORY_ENTRY['IMAGE_DIRECTORY_ENTRY_COM_DESCRIPTOR']]
        data_bytes = self.get_data(rva=clr_header_dir.VirtualAddress, length=CLR_HEADER_SIZE)

        try:
            values = unpack(CLR_HEADER_FORMAT, data_bytes)
        except StructError as e:
            raise CLRFormatError(f'CLR header is truncated: {e}') from e

        return Struct.ClrHeader(*values[:11])

    def get_metadata_bytes(self) -> bytes:
        metadata_rva = self.clr_header.metadata_rva
        metadata_size = self.clr_header.metadata_size

        if metadata_rva == 0 or metadata_size == 0:
            raise CLRFormatError('CLR header has no metadata directory.')

        try:
            metadata_bytes = self.get_data(rva=metadata_rva, length=metadata_size)
        except PEFormatError as e:
            raise CLRFormatError(f'Invalid metadata rva: 0x{metadata_rva:x}') from e

        if len(metadata_bytes) < metadata_size or metadata_bytes[:4] != b'BSJB':
            raise CLRFormatError('CLR header of file is most likely corrupt.')

        self.logger.debug(f'metadata at rva: 0x{metadata_rva:x} size: 0x{metadata_size:x}')
        return metadata_bytes

    @property
    def entry_point_token(self) -> int:
        return self.clr_header.entry_point_token

    def get_method_data(self, rva: int) -> Optional[bytes]:
        """
        Read a method body (header + code) at the given RVA. Returns None when there is no readable body.
        """
        if rva == 0:
            return None

        try:
            header_bytes = self.get_data(rva, MAX_METHOD_HEADER_SIZE)
            header = parse_method_header(header_bytes)
            return self.get_data(rva, header.header_size + header.code_size)
        except (PEFormatError, DecodeError) as e:
            self.logger.debug(f'Cannot read method body at rva 0x{rva:x} - {e}')

        return None
