"""
Part of dotnetinvoker

Decoding of "#Blob" signatures (ECMA-335, Partition II, 23.2) into readable type names.
"""

from typing import Callable, List, Tuple

from .model import Struct
from .metadata import read_compressed_uint
from .constants import PRIMITIVE_ELEMENT_TYPE_NAMES, SIGNATURE_ELEMENT_TYPES_REVERSE


TYPE_DEF_OR_REF_TABLES = ['TypeDef', 'TypeRef', 'TypeSpec']

CALLING_CONVENTION_HASTHIS = 0x20
CALLING_CONVENTION_GENERIC = 0x10
CALLING_CONVENTION_KIND_MASK = 0x0F
FIELD_SIGNATURE = 0x06
METHOD_SPEC_SIGNATURE = 0x0A

ELEMENT_TYPE_PTR = SIGNATURE_ELEMENT_TYPES_REVERSE['PTR']
ELEMENT_TYPE_BYREF = SIGNATURE_ELEMENT_TYPES_REVERSE['BYREF']
ELEMENT_TYPE_VALUETYPE = SIGNATURE_ELEMENT_TYPES_REVERSE['VALUETYPE']
ELEMENT_TYPE_CLASS = SIGNATURE_ELEMENT_TYPES_REVERSE['CLASS']
ELEMENT_TYPE_VAR = SIGNATURE_ELEMENT_TYPES_REVERSE['VAR']
ELEMENT_TYPE_ARRAY = SIGNATURE_ELEMENT_TYPES_REVERSE['ARRAY']
ELEMENT_TYPE_GENERICINST = SIGNATURE_ELEMENT_TYPES_REVERSE['GENERICINST']
ELEMENT_TYPE_FNPTR = SIGNATURE_ELEMENT_TYPES_REVERSE['FNPTR']
ELEMENT_TYPE_SZARRAY = SIGNATURE_ELEMENT_TYPES_REVERSE['SZARRAY']
ELEMENT_TYPE_MVAR = SIGNATURE_ELEMENT_TYPES_REVERSE['MVAR']
ELEMENT_TYPE_CMOD_REQD = SIGNATURE_ELEMENT_TYPES_REVERSE['CMOD_REQD']
ELEMENT_TYPE_CMOD_OPT = SIGNATURE_ELEMENT_TYPES_REVERSE['CMOD_OPT']
ELEMENT_TYPE_SENTINEL = SIGNATURE_ELEMENT_TYPES_REVERSE['SENTINEL']
ELEMENT_TYPE_PINNED = SIGNATURE_ELEMENT_TYPES_REVERSE['PINNED']


def is_generic_parameter(type_name: str) -> bool:
    return '!' in type_name


class SignatureReader(object):
    """
    Turns signature blobs into type names. TypeDef/TypeRef/TypeSpec references are named through
    type_name_resolver(table_name, rid). Malformed blobs raise ValueError.
    """
    def __init__(self, type_name_resolver: Callable[[str, int], str]):
        self.type_name_resolver = type_name_resolver

    @staticmethod
    def _read_uint(blob: bytes, offset: int) -> Tuple[int, int]:
        value, size = read_compressed_uint(blob, offset)
        if value is None:
            raise ValueError(f'Truncated signature at offset {offset}')

        return value, offset + size

    def _read_type_def_or_ref(self, blob: bytes, offset: int) -> Tuple[str, int]:
        value, offset = self._read_uint(blob, offset)
        tag = value & 0x03
        if tag >= len(TYPE_DEF_OR_REF_TABLES):
            raise ValueError(f'Invalid TypeDefOrRef tag {tag}')

        return self.type_name_resolver(TYPE_DEF_OR_REF_TABLES[tag], value >> 2), offset

    def read_type(self, blob: bytes, offset: int = 0) -> Tuple[str, int]:
        if offset >= len(blob):
            raise ValueError(f'Truncated signature at offset {offset}')

        element_type = blob[offset]
        offset += 1

        if element_type in PRIMITIVE_ELEMENT_TYPE_NAMES:
            return PRIMITIVE_ELEMENT_TYPE_NAMES[element_type], offset

        if element_type in (ELEMENT_TYPE_CMOD_REQD, ELEMENT_TYPE_CMOD_OPT):
            _, offset = self._read_type_def_or_ref(blob, offset)
            return self.read_type(blob, offset)

        if element_type in (ELEMENT_TYPE_PINNED, ELEMENT_TYPE_SENTINEL):
            return self.read_type(blob, offset)

        if element_type == ELEMENT_TYPE_PTR:
            name, offset = self.read_type(blob, offset)
            return f'{name}*', offset

        if element_type == ELEMENT_TYPE_BYREF:
            name, offset = self.read_type(blob, offset)
            return f'{name}&', offset

        if element_type in (ELEMENT_TYPE_VALUETYPE, ELEMENT_TYPE_CLASS):
            return self._read_type_def_or_ref(blob, offset)

        if element_type == ELEMENT_TYPE_VAR:
            number, offset = self._read_uint(blob, offset)
            return f'!{number}', offset

        if element_type == ELEMENT_TYPE_MVAR:
            number, offset = self._read_uint(blob, offset)
            return f'!!{number}', offset

        if element_type == ELEMENT_TYPE_SZARRAY:
            name, offset = self.read_type(blob, offset)
            return f'{name}[]', offset

        if element_type == ELEMENT_TYPE_ARRAY:
            name, offset = self.read_type(blob, offset)
            rank, offset = self._read_uint(blob, offset)
            num_sizes, offset = self._read_uint(blob, offset)
            for _ in range(num_sizes):
                _, offset = self._read_uint(blob, offset)
            num_lo_bounds, offset = self._read_uint(blob, offset)
            for _ in range(num_lo_bounds):
                _, offset = self._read_uint(blob, offset)
            return f'{name}[{"," * max(rank - 1, 0)}]', offset

        if element_type == ELEMENT_TYPE_GENERICINST:
            offset += 1  # CLASS or VALUETYPE
            name, offset = self._read_type_def_or_ref(blob, offset)
            count, offset = self._read_uint(blob, offset)
            arguments = []
            for _ in range(count):
                argument, offset = self.read_type(blob, offset)
                arguments.append(argument)
            return f'{name}<{",".join(arguments)}>', offset

        if element_type == ELEMENT_TYPE_FNPTR:
            signature, offset = self._read_method(blob, offset)
            return f'method {signature.return_type} *({",".join(signature.parameter_types)})', offset

        raise ValueError(f'Unsupported element type 0x{element_type:02x}')

    def _read_method(self, blob: bytes, offset: int) -> Tuple[Struct.MethodSignature, int]:
        if offset >= len(blob):
            raise ValueError('Empty method signature')

        calling_convention = blob[offset]
        offset += 1

        generic_parameter_count = 0
        if calling_convention & CALLING_CONVENTION_GENERIC:
            generic_parameter_count, offset = self._read_uint(blob, offset)

        parameter_count, offset = self._read_uint(blob, offset)
        return_type, offset = self.read_type(blob, offset)

        parameter_types: List[str] = []
        for _ in range(parameter_count):
            if offset < len(blob) and blob[offset] == ELEMENT_TYPE_SENTINEL:
                offset += 1
            parameter_type, offset = self.read_type(blob, offset)
            parameter_types.append(parameter_type)

        signature = Struct.MethodSignature(
            has_this=bool(calling_convention & CALLING_CONVENTION_HASTHIS),
            generic_parameter_count=generic_parameter_count,
            return_type=return_type,
            parameter_types=tuple(parameter_types),
            calling_convention=calling_convention
        )

        return signature, offset

    def read_method_signature(self, blob: bytes) -> Struct.MethodSignature:
        signature, _ = self._read_method(blob, 0)
        return signature

    def read_field_signature(self, blob: bytes) -> str:
        if not blob or blob[0] != FIELD_SIGNATURE:
            raise ValueError('Not a field signature')

        name, _ = self.read_type(blob, 1)
        return name

    def read_method_instantiation(self, blob: bytes) -> List[str]:
        if not blob or blob[0] != METHOD_SPEC_SIGNATURE:
            raise ValueError('Not a method instantiation signature')

        count, offset = self._read_uint(blob, 1)
        arguments = []
        for _ in range(count):
            argument, offset = self.read_type(blob, offset)
            arguments.append(argument)

        return arguments

    @staticmethod
    def is_field_signature(blob: bytes) -> bool:
        return bool(blob) and blob[0] & CALLING_CONVENTION_KIND_MASK == FIELD_SIGNATURE

