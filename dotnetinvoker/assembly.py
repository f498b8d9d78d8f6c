"""
Part of dotnetinvoker

Static view of one .NET assembly: method enumeration, method bodies and metadata token resolution.
"""

import re
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Union

from .logger import get_logger
from .errors import DecodeError
from .model import Type, Struct
from .metadata import MetadataReader, token_table, read_compressed_uint
from .signature import SignatureReader, is_generic_parameter, ELEMENT_TYPE_GENERICINST
from .decoder import decode, read_method_body
from .constants import METADATA_TABLE_INDEXES_REVERSE, USER_STRING_TOKEN_TABLE, TYPE_NAME_ALIASES


BodySource = Callable[[int], Optional[bytes]]
ResolvedOperand = Union[str, Struct.MethodDescriptor, Struct.FieldReference, Struct.TypeReference]

METHOD_GENERIC_PARAMETER = re.compile(r'!!(\d+)')

MEMBER_ACCESS_NAMES = {
    Type.MethodDefMemberAccess.COMPILERCONTROLLED: 'privatescope',
    Type.MethodDefMemberAccess.PRIVATE: 'private',
    Type.MethodDefMemberAccess.FAMANDASSEM: 'private protected',
    Type.MethodDefMemberAccess.ASSEM: 'internal',
    Type.MethodDefMemberAccess.FAMILY: 'protected',
    Type.MethodDefMemberAccess.FAMORASSEM: 'protected internal',
    Type.MethodDefMemberAccess.PUBLIC: 'public'
}


def make_token(table_name: str, rid: int) -> int:
    return (METADATA_TABLE_INDEXES_REVERSE[table_name] << 24) | rid


def short_type_name(type_name: str) -> str:
    if type_name in TYPE_NAME_ALIASES:
        return TYPE_NAME_ALIASES[type_name]

    return type_name.rsplit('.', 1)[-1]


def format_signature(method: Struct.MethodDescriptor) -> str:
    """
    Readable C#-like signature, e.g. "public static int Helper(int value)".
    """
    parts = []

    access = MEMBER_ACCESS_NAMES.get(method.flags & Type.MethodDefMask.MEMBERACCESS)
    if access and method.flags:
        parts.append(access)
    if method.is_static:
        parts.append('static')
    if method.flags & Type.MethodDefMask.ABSTRACT:
        parts.append('abstract')
    elif method.flags & Type.MethodDefMask.VIRTUAL:
        parts.append('virtual')

    if method.is_constructor:
        name = short_type_name(method.declaring_type)
    else:
        parts.append(short_type_name(method.return_type))
        name = method.name

    parameters = []
    for index, parameter_type in enumerate(method.parameter_types):
        parameter = short_type_name(parameter_type)
        if index < len(method.parameter_names) and method.parameter_names[index]:
            parameter = f'{parameter} {method.parameter_names[index]}'
        parameters.append(parameter)

    parts.append(f'{name}({", ".join(parameters)})')

    return ' '.join(parts)


class DotNetAssembly(object):
    def __init__(self, metadata: MetadataReader, body_source: BodySource, path: str = '',
                 log_level: int = logging.INFO):
        self.metadata = metadata
        self.body_source = body_source
        self.path = path
        self.logger = get_logger('assembly_logger', level=log_level)
        self.signatures = SignatureReader(self.get_type_name)

        self._method_owner: Optional[Dict[int, int]] = None
        self._field_owner: Optional[Dict[int, int]] = None
        self._enclosing_class: Optional[Dict[int, int]] = None
        self._generic_owners: Optional[set] = None
        self._method_cache: Dict[int, Struct.MethodDescriptor] = {}
        self._type_spec_stack: set = set()

    @classmethod
    def from_file(cls, path: str, log_level: int = logging.INFO) -> 'DotNetAssembly':
        # Imported here so the static analysis parts work without a PE file
        from .parser import DotNetPEParser

        pe = DotNetPEParser(path, log_level=log_level)
        return cls(pe.metadata, pe.get_method_data, path=path, log_level=log_level)

    @property
    def name(self) -> str:
        if self.metadata.row_count('Assembly'):
            return self.metadata.get_string(self.metadata.row('Assembly', 1).Name)
        if self.metadata.row_count('Module'):
            return self.metadata.get_string(self.metadata.row('Module', 1).Name).rsplit('.', 1)[0]

        return ''

    def _range_owner(self, list_column: str, member_table: str) -> Dict[int, int]:
        """
        Map member row ids to the TypeDef owning them through the TypeDef FieldList/MethodList ranges.
        """
        owners = {}
        type_defs = self.metadata.table('TypeDef')
        member_count = self.metadata.row_count(member_table)

        for index, type_def in enumerate(type_defs):
            start = getattr(type_def, list_column)
            if index + 1 < len(type_defs):
                end = getattr(type_defs[index + 1], list_column)
            else:
                end = member_count + 1
            for member_rid in range(start, min(end, member_count + 1)):
                owners[member_rid] = type_def.rid

        return owners

    @property
    def method_owner(self) -> Dict[int, int]:
        if self._method_owner is None:
            self._method_owner = self._range_owner('MethodList', 'MethodDef')

        return self._method_owner

    @property
    def field_owner(self) -> Dict[int, int]:
        if self._field_owner is None:
            self._field_owner = self._range_owner('FieldList', 'Field')

        return self._field_owner

    @property
    def enclosing_class(self) -> Dict[int, int]:
        if self._enclosing_class is None:
            self._enclosing_class = {row.NestedClass: row.EnclosingClass
                                     for row in self.metadata.table('NestedClass')}

        return self._enclosing_class

    @property
    def generic_owners(self) -> set:
        if self._generic_owners is None:
            self._generic_owners = set()
            for row in self.metadata.table('GenericParam'):
                self._generic_owners.add(self.metadata.decode_coded_index('TypeOrMethodDef', row.Owner))

        return self._generic_owners

    def get_type_name(self, table_name: str, rid: int, depth: int = 0) -> str:
        if depth > 16:
            raise ValueError('Type nesting is too deep')

        if table_name == 'TypeDef':
            row = self.metadata.row('TypeDef', rid)
            name = self.metadata.get_string(row.TypeName)
            namespace = self.metadata.get_string(row.TypeNamespace)
            if rid in self.enclosing_class:
                return f'{self.get_type_name("TypeDef", self.enclosing_class[rid], depth + 1)}+{name}'
            return f'{namespace}.{name}' if namespace else name

        if table_name == 'TypeRef':
            row = self.metadata.row('TypeRef', rid)
            name = self.metadata.get_string(row.TypeName)
            namespace = self.metadata.get_string(row.TypeNamespace)
            scope_table, scope_rid = self.metadata.decode_coded_index('ResolutionScope', row.ResolutionScope)
            if scope_table == 'TypeRef' and scope_rid:
                return f'{self.get_type_name("TypeRef", scope_rid, depth + 1)}+{name}'
            return f'{namespace}.{name}' if namespace else name

        if table_name == 'TypeSpec':
            # Self-referencing specs are malformed
            if rid in self._type_spec_stack:
                raise ValueError(f'TypeSpec {rid} references itself')
            row = self.metadata.row('TypeSpec', rid)
            self._type_spec_stack.add(rid)
            try:
                name, _ = self.signatures.read_type(self.metadata.get_blob(row.Signature))
            finally:
                self._type_spec_stack.discard(rid)
            return name

        raise KeyError(f'{table_name} is not a type table')

    def get_type_assembly(self, table_name: str, rid: int, depth: int = 0) -> str:
        """
        Name of the assembly declaring a TypeDef/TypeRef/TypeSpec. Empty when it cannot be determined.
        """
        if depth > 16:
            return ''

        if table_name == 'TypeDef':
            return self.name

        if table_name == 'TypeRef':
            row = self.metadata.row('TypeRef', rid)
            scope_table, scope_rid = self.metadata.decode_coded_index('ResolutionScope', row.ResolutionScope)
            if scope_table == 'AssemblyRef' and scope_rid:
                return self.metadata.get_string(self.metadata.row('AssemblyRef', scope_rid).Name)
            if scope_table == 'TypeRef' and scope_rid:
                return self.get_type_assembly('TypeRef', scope_rid, depth + 1)
            return self.name

        if table_name == 'TypeSpec':
            blob = self.metadata.get_blob(self.metadata.row('TypeSpec', rid).Signature)
            # Only generic instantiations name a declaring type
            if len(blob) > 2 and blob[0] == ELEMENT_TYPE_GENERICINST:
                value, _ = read_compressed_uint(blob, 2)
                if value is not None:
                    return self.get_type_assembly(['TypeDef', 'TypeRef', 'TypeSpec'][value & 0x3], value >> 2,
                                                  depth + 1)

        return ''

    def _parameter_names(self, method_rid: int) -> List[str]:
        method_count = self.metadata.row_count('MethodDef')
        param_count = self.metadata.row_count('Param')
        start = self.metadata.row('MethodDef', method_rid).ParamList
        if method_rid < method_count:
            end = self.metadata.row('MethodDef', method_rid + 1).ParamList
        else:
            end = param_count + 1

        names = {}
        for param_rid in range(start, min(end, param_count + 1)):
            param = self.metadata.row('Param', param_rid)
            if param.Sequence > 0:
                names[param.Sequence] = self.metadata.get_string(param.Name)

        return [names.get(sequence, '') for sequence in range(1, max(names, default=0) + 1)]

    def get_method_def(self, rid: int) -> Struct.MethodDescriptor:
        if rid in self._method_cache:
            return self._method_cache[rid]

        row = self.metadata.row('MethodDef', rid)
        owner_rid = self.method_owner.get(rid)
        declaring_type = self.get_type_name('TypeDef', owner_rid) if owner_rid else '<Module>'
        name = self.metadata.get_string(row.Name)

        try:
            signature = self.signatures.read_method_signature(self.metadata.get_blob(row.Signature))
            parameter_types = signature.parameter_types
            return_type = signature.return_type
            generic_parameter_count = signature.generic_parameter_count
        except (ValueError, KeyError) as e:
            self.logger.debug(f'Cannot decode signature of method {declaring_type}::{name} - {e}')
            parameter_types, return_type, generic_parameter_count = (), '?', 0

        is_generic_definition = generic_parameter_count > 0 or ('MethodDef', rid) in self.generic_owners
        contains_generic_parameters = is_generic_definition or ('TypeDef', owner_rid) in self.generic_owners or \
            any(is_generic_parameter(t) for t in parameter_types + (return_type,))

        descriptor = Struct.MethodDescriptor(
            declaring_type=declaring_type,
            name=name,
            parameter_types=tuple(parameter_types),
            return_type=return_type,
            is_static=bool(row.Flags & Type.MethodDefMask.STATIC),
            is_generic_definition=is_generic_definition,
            has_generic_arguments=False,
            contains_generic_parameters=contains_generic_parameters,
            assembly=self.name,
            token=make_token('MethodDef', rid),
            rva=row.RVA,
            flags=row.Flags,
            parameter_names=tuple(self._parameter_names(rid))
        )
        self._method_cache[rid] = descriptor

        return descriptor

    def methods(self) -> List[Struct.MethodDescriptor]:
        """
        Every method defined in the assembly, constructors included, in metadata order.
        """
        result = []
        for rid in range(1, self.metadata.row_count('MethodDef') + 1):
            try:
                result.append(self.get_method_def(rid))
            except (KeyError, ValueError) as e:
                self.logger.debug(f'Skipping MethodDef row {rid} - {e}')

        return result

    def find_method(self, token: int) -> Struct.MethodDescriptor:
        if token_table(token) != 'MethodDef':
            raise KeyError(f'Token 0x{token:08x} is not a MethodDef token')

        return self.get_method_def(token & 0x00FFFFFF)

    def _resolve_member_ref(self, rid: int) -> Union[Struct.MethodDescriptor, Struct.FieldReference]:
        row = self.metadata.row('MemberRef', rid)
        name = self.metadata.get_string(row.Name)
        parent_table, parent_rid = self.metadata.decode_coded_index('MemberRefParent', row.Class)

        if parent_table == 'MethodDef':
            parent = self.get_method_def(parent_rid)
            declaring_type, assembly = parent.declaring_type, parent.assembly
        elif parent_table == 'ModuleRef':
            declaring_type = '<Module>'
            assembly = self.metadata.get_string(self.metadata.row('ModuleRef', parent_rid).Name)
        else:
            declaring_type = self.get_type_name(parent_table, parent_rid)
            assembly = self.get_type_assembly(parent_table, parent_rid)

        blob = self.metadata.get_blob(row.Signature)
        if SignatureReader.is_field_signature(blob):
            return Struct.FieldReference(declaring_type, name, self.signatures.read_field_signature(blob))

        signature = self.signatures.read_method_signature(blob)
        return Struct.MethodDescriptor(
            declaring_type=declaring_type,
            name=name,
            parameter_types=signature.parameter_types,
            return_type=signature.return_type,
            is_static=not signature.has_this,
            is_generic_definition=signature.generic_parameter_count > 0,
            has_generic_arguments='<' in declaring_type,
            contains_generic_parameters=any(is_generic_parameter(t) for t in
                                            signature.parameter_types + (signature.return_type, declaring_type)),
            assembly=assembly,
            token=make_token('MemberRef', rid)
        )

    def _resolve_method_spec(self, rid: int) -> Struct.MethodDescriptor:
        row = self.metadata.row('MethodSpec', rid)
        method_table, method_rid = self.metadata.decode_coded_index('MethodDefOrRef', row.Method)
        if method_table == 'MethodDef':
            method = self.get_method_def(method_rid)
        else:
            method = self._resolve_member_ref(method_rid)
            if not isinstance(method, Struct.MethodDescriptor):
                raise KeyError(f'MethodSpec {rid} does not reference a method')

        arguments = self.signatures.read_method_instantiation(self.metadata.get_blob(row.Instantiation))

        def substitute(type_name: str) -> str:
            return METHOD_GENERIC_PARAMETER.sub(
                lambda m: arguments[int(m.group(1))] if int(m.group(1)) < len(arguments) else m.group(0), type_name)

        parameter_types = tuple(substitute(t) for t in method.parameter_types)
        return_type = substitute(method.return_type)

        return replace(
            method,
            parameter_types=parameter_types,
            return_type=return_type,
            is_generic_definition=False,
            has_generic_arguments=True,
            contains_generic_parameters=any(is_generic_parameter(t) for t in
                                            parameter_types + (return_type,) + tuple(arguments)),
            token=make_token('MethodSpec', rid)
        )

    def _resolve_field(self, rid: int) -> Struct.FieldReference:
        row = self.metadata.row('Field', rid)
        owner_rid = self.field_owner.get(rid)
        declaring_type = self.get_type_name('TypeDef', owner_rid) if owner_rid else '<Module>'

        try:
            field_type = self.signatures.read_field_signature(self.metadata.get_blob(row.Signature))
        except (ValueError, KeyError):
            field_type = ''

        return Struct.FieldReference(declaring_type, self.metadata.get_string(row.Name), field_type)

    def resolve_member(self, token: int) -> ResolvedOperand:
        """
        Resolve a member or type token. Raises KeyError for tokens that do not name a member or type.
        """
        table_name = token_table(token)
        rid = token & 0x00FFFFFF

        if table_name == 'MethodDef':
            return self.get_method_def(rid)
        if table_name == 'MemberRef':
            return self._resolve_member_ref(rid)
        if table_name == 'MethodSpec':
            return self._resolve_method_spec(rid)
        if table_name == 'Field':
            return self._resolve_field(rid)
        if table_name in ('TypeDef', 'TypeRef', 'TypeSpec'):
            return Struct.TypeReference(self.get_type_name(table_name, rid))

        raise KeyError(f'Cannot resolve token 0x{token:08x} ({table_name})')

    def resolve_string(self, token: int) -> str:
        return self.metadata.get_user_string_by_token(token)

    def resolve_token(self, token: int) -> ResolvedOperand:
        if token >> 24 == USER_STRING_TOKEN_TABLE:
            return self.resolve_string(token)

        return self.resolve_member(token)

    def get_method_body(self, method: Struct.MethodDescriptor) -> Optional[bytes]:
        """
        Code bytes of a method defined in this assembly, without the method header.
        """
        if method.assembly != self.name or token_table(method.token) != 'MethodDef' or method.rva == 0:
            return None

        data = self.body_source(method.rva)
        if not data:
            return None

        try:
            _, code = read_method_body(data)
        except DecodeError as e:
            self.logger.debug(f'Cannot read body of {method.id} - {e}')
            return None

        return code

    def decode_method(self, method: Struct.MethodDescriptor) -> Optional[Struct.DecodedMethodBody]:
        body = self.get_method_body(method)
        if body is None:
            return None

        return decode(body, resolver=self.resolve_token)

    def get_references(self) -> List[str]:
        return [self.metadata.get_string(row.Name) for row in self.metadata.table('AssemblyRef')]

    def get_unmanaged_modules(self) -> List[str]:
        return [self.metadata.get_string(row.Name) for row in self.metadata.table('ModuleRef')]
