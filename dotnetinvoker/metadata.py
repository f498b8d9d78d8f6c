"""
Part of dotnetinvoker

Reader for the CLI metadata blob (the "BSJB" root): stream headers, heaps and the "#~"/"#-" tables.

The following references were used:
    CLI specification (ECMA-335 standard), Partition II, chapter 24
        https://www.ecma-international.org/publications/files/ECMA-ST/ECMA-335.pdf
    Erik Pistelli's .NET file format documentation
        https://www.ntcore.com/files/dotnetformat.htm
"""

import logging
from math import log, floor
from struct import unpack_from, error as StructError
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from .logger import get_logger
from .errors import CLRFormatError
from .model import Struct
from .constants import (METADATA_SIGNATURE, METADATA_TABLE_INDEXES, METADATA_TABLE_SCHEMAS, METADATA_TOKEN_TABLES,
                        TABLE_ROW_VARIABLE_LENGTH_FIELDS, MAX_DOTNET_STRING_LENGTH, USER_STRING_TOKEN_TABLE)


FIXED_COLUMN_FORMATS = {
    'u1': (1, 'B'),
    'u2': (2, 'H'),
    'u4': (4, 'I')
}

HEAP_SIZE_FLAGS = {
    'string': 0x01,
    'guid': 0x02,
    'blob': 0x04
}

# Extra dword after the row counts, as written by some protectors (e.g. ConfuserEx)
HEAP_EXTRA_DATA_FLAG = 0x40


def read_compressed_uint(data: bytes, offset: int = 0) -> Tuple[Optional[int], Optional[int]]:
    """
    Decode an ECMA-335 compressed unsigned integer. Returns (value, size) or (None, None) when truncated.
    """
    if len(data) <= offset:
        return None, None

    first_byte = data[offset]

    if (first_byte & 0x80) == 0:
        return int(first_byte), 1
    elif (first_byte & 0xC0) == 0x80:
        if len(data) < offset + 2:
            return None, None
        second_byte = data[offset + 1]
        length = ((first_byte & 0x3F) << 8) | second_byte
        return length, 2
    elif (first_byte & 0xE0) == 0xC0:
        if len(data) < offset + 4:
            return None, None
        second_byte = data[offset + 1]
        third_byte = data[offset + 2]
        fourth_byte = data[offset + 3]
        length = ((first_byte & 0x1F) << 24) | (second_byte << 16) | \
                 (third_byte << 8) | fourth_byte
        return length, 4
    else:
        return None, None


def token_table(token: int) -> Optional[str]:
    return METADATA_TOKEN_TABLES.get(token & 0xFF000000)


class MetadataReader(object):
    def __init__(self, data: bytes, log_level: int = logging.INFO):
        self.data = bytes(data)
        self.logger = get_logger('metadata_logger', level=log_level)

        self.version = ''
        self.streams: Dict[str, Tuple[int, int]] = {}
        self.heap_sizes = 0
        self.table_row_counts: Dict[str, int] = {}
        self.table_offsets: Dict[str, int] = {}
        self.table_row_sizes: Dict[str, int] = {}
        self.field_size_info: Dict[str, Tuple[int, str]] = {}
        self._table_cache: Dict[str, List[Struct.MetadataTableRow]] = {}

        try:
            self._parse_root()
            self._parse_tables_header()
        except StructError as e:
            raise CLRFormatError(f'Metadata header is truncated: {e}') from e

    def _parse_root(self) -> None:
        signature, major, minor, _, version_length = unpack_from('<IHHII', self.data, 0)
        if signature != METADATA_SIGNATURE:
            raise CLRFormatError(f'Invalid metadata signature 0x{signature:08x}.')

        offset = 16
        self.version = self.data[offset:offset + version_length].split(b'\x00', 1)[0].decode('utf-8', 'replace')
        offset += version_length
        _, num_streams = unpack_from('<HH', self.data, offset)
        offset += 4

        for _ in range(num_streams):
            stream_offset, stream_size = unpack_from('<II', self.data, offset)
            offset += 8
            name_end = self.data.find(b'\x00', offset)
            if name_end == -1:
                raise CLRFormatError('Unterminated stream name in metadata header.')
            stream_name = self.data[offset:name_end].decode('ascii', 'replace')
            # Name is padded to the next 4 byte boundary including the terminator
            offset += ((name_end - offset) // 4 + 1) * 4

            # To counteract obfuscators appending fake streams, only the first stream of a kind is used
            stream_key = stream_name.lower()
            if stream_key == '#-':
                stream_key = '#~'
            if stream_key in self.streams:
                self.logger.debug(f'ignoring duplicate stream: {stream_name}')
                continue

            self.streams[stream_key] = (stream_offset, stream_size)
            self.logger.debug(f'parsing stream: {stream_name} offset: 0x{stream_offset:x} size: 0x{stream_size:x}')

        if '#~' not in self.streams:
            raise CLRFormatError('Metadata has no tables stream.')

    def _parse_tables_header(self) -> None:
        stream_offset, _ = self.streams['#~']
        _, _, _, self.heap_sizes, _, valid, _ = unpack_from('<IBBBBQQ', self.data, stream_offset)
        offset = stream_offset + 24

        present_tables = []
        for index in range(64):
            if valid & (1 << index):
                table_name = METADATA_TABLE_INDEXES.get(index)
                if table_name is None:
                    raise CLRFormatError(f'Unknown metadata table index {index}.')
                present_tables.append(table_name)
                self.table_row_counts[table_name] = unpack_from('<I', self.data, offset)[0]
                offset += 4

        if self.heap_sizes & HEAP_EXTRA_DATA_FLAG:
            offset += 4

        self.field_size_info = self.calculate_field_size_info(self.table_row_counts)

        for table_name in present_tables:
            row_size = sum(self._column_size(kind) for _, kind in METADATA_TABLE_SCHEMAS[table_name])
            self.table_row_sizes[table_name] = row_size
            self.table_offsets[table_name] = offset
            offset += row_size * self.table_row_counts[table_name]

        if offset > len(self.data):
            raise CLRFormatError('Metadata tables exceed the metadata size.')

    @staticmethod
    def get_max_rows(table_size_lookup: Dict[str, int], table_names: List[str]) -> int:
        max_rows = 0
        for table_name in table_names:
            if table_name in table_size_lookup:
                current_size = table_size_lookup[table_name]
                if current_size > max_rows:
                    max_rows = current_size

        return max_rows

    def get_field_size_info(self, table_size_lookup: Dict[str, int], table_names: List[str], encoding_bits: int) \
            -> Tuple[int, str]:
        two_byte_max_rows = 1 << (16 - encoding_bits)

        max_rows = self.get_max_rows(table_size_lookup, table_names)

        if max_rows >= two_byte_max_rows:
            return 4, 'I'

        return 2, 'H'

    def calculate_field_size_info(self, table_size_lookup: Dict[str, int]) -> Dict:
        field_size_info = {}

        for field_name in TABLE_ROW_VARIABLE_LENGTH_FIELDS:
            table_names = TABLE_ROW_VARIABLE_LENGTH_FIELDS[field_name]
            num_bits = self.coded_index_bits(field_name)
            field_size_info[field_name] = self.get_field_size_info(table_size_lookup, table_names, num_bits)

        # Simple indexes into a single table
        for table_name in METADATA_TABLE_SCHEMAS:
            field_size_info[table_name] = self.get_field_size_info(table_size_lookup, [table_name], 0)

        return field_size_info

    @staticmethod
    def coded_index_bits(field_name: str) -> int:
        table_names = TABLE_ROW_VARIABLE_LENGTH_FIELDS[field_name]
        return int(floor(log(len(table_names) - 1, 2))) + 1

    def _column_format(self, kind: str) -> Tuple[int, str]:
        if kind in FIXED_COLUMN_FORMATS:
            return FIXED_COLUMN_FORMATS[kind]
        if kind in HEAP_SIZE_FLAGS:
            if self.heap_sizes & HEAP_SIZE_FLAGS[kind]:
                return 4, 'I'
            return 2, 'H'
        return self.field_size_info[kind]

    def _column_size(self, kind: str) -> int:
        return self._column_format(kind)[0]

    def row_count(self, table_name: str) -> int:
        return self.table_row_counts.get(table_name, 0)

    def table(self, table_name: str) -> List[Struct.MetadataTableRow]:
        if table_name in self._table_cache:
            return self._table_cache[table_name]

        rows = []
        if table_name in self.table_offsets:
            schema = METADATA_TABLE_SCHEMAS[table_name]
            row_offset = self.table_offsets[table_name]
            for rid in range(1, self.table_row_counts[table_name] + 1):
                values = {}
                column_offset = row_offset
                for column_name, kind in schema:
                    size, fmt = self._column_format(kind)
                    values[column_name] = unpack_from('<' + fmt, self.data, column_offset)[0]
                    column_offset += size
                rows.append(Struct.MetadataTableRow(table_name, rid, values))
                row_offset += self.table_row_sizes[table_name]

        self._table_cache[table_name] = rows
        return rows

    def row(self, table_name: str, rid: int) -> Struct.MetadataTableRow:
        """
        Get a row by its 1-based row id. Raises KeyError for row ids outside the table.
        """
        rows = self.table(table_name)
        if rid < 1 or rid > len(rows):
            raise KeyError(f'{table_name} has no row {rid}')

        return rows[rid - 1]

    def decode_coded_index(self, field_name: str, value: int) -> Tuple[str, int]:
        num_bits = self.coded_index_bits(field_name)
        tag = value & ((1 << num_bits) - 1)
        table_names = TABLE_ROW_VARIABLE_LENGTH_FIELDS[field_name]
        if tag >= len(table_names):
            raise KeyError(f'Invalid {field_name} tag {tag}')

        return table_names[tag], value >> num_bits

    def _heap(self, name: str) -> Tuple[int, int]:
        if name not in self.streams:
            raise KeyError(f'Metadata has no {name} stream')

        return self.streams[name]

    def get_string(self, offset: int) -> str:
        try:
            heap_offset, heap_size = self._heap('#strings')
        except KeyError:
            return ''

        if offset >= heap_size:
            self.logger.debug(f'string offset 0x{offset:x} outside of #Strings heap')
            return ''

        start = heap_offset + offset
        end = self.data.find(b'\x00', start, heap_offset + heap_size)
        if end == -1:
            end = heap_offset + heap_size
        end = min(end, start + MAX_DOTNET_STRING_LENGTH)

        return self.data[start:end].decode('utf-8', 'replace')

    def get_user_string(self, offset: int) -> str:
        """
        Read a "#US" heap entry. Raises KeyError for offsets that do not start a valid entry.
        """
        heap_offset, heap_size = self._heap('#us')
        if offset == 0 or offset >= heap_size:
            raise KeyError(f'User string offset 0x{offset:x} outside of #US heap')

        heap = self.data[heap_offset:heap_offset + heap_size]
        length, length_size = read_compressed_uint(heap, offset)
        if length is None or offset + length_size + length > heap_size:
            raise KeyError(f'Malformed user string at 0x{offset:x}')

        start = offset + length_size
        # Trailing byte flags special characters and is not part of the string
        string_length = length - 1 if length % 2 == 1 else length

        return heap[start:start + string_length].decode('utf-16-le', 'replace')

    def get_user_string_by_token(self, token: int) -> str:
        if token >> 24 != USER_STRING_TOKEN_TABLE:
            raise KeyError(f'Token 0x{token:08x} is not a user string token')

        return self.get_user_string(token & 0x00FFFFFF)

    def get_blob(self, offset: int) -> bytes:
        try:
            heap_offset, heap_size = self._heap('#blob')
        except KeyError:
            return b''

        if offset >= heap_size:
            self.logger.debug(f'blob offset 0x{offset:x} outside of #Blob heap')
            return b''

        heap = self.data[heap_offset:heap_offset + heap_size]
        length, length_size = read_compressed_uint(heap, offset)
        if length is None:
            return b''

        start = offset + length_size
        return heap[start:start + length]

    def get_guid(self, index: int) -> Optional[UUID]:
        if index == 0:
            return None

        try:
            heap_offset, heap_size = self._heap('#guid')
        except KeyError:
            return None

        start = (index - 1) * 16
        if start + 16 > heap_size:
            return None

        return UUID(bytes_le=self.data[heap_offset + start:heap_offset + start + 16])
