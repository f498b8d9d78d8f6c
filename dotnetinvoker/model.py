"""
Part of dotnetinvoker

Value types shared between the decoder, the call graph builder and the invocation pipeline.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Tuple

from dncil.cil.enums import OperandType
from dncil.cil.opcode import OpCode


class Type:
    class CallKind(Enum):
        CALL = 'call'
        VIRTUAL_CALL = 'virtual-call'
        CONSTRUCT = 'construct'

    class TypeKind(Enum):
        STRING = 'String'
        ENUM = 'Enum'
        ARRAY = 'Array'
        VALUE = 'Value'
        CLASS = 'Class'
        INTERFACE = 'Interface'
        ABSTRACT = 'Abstract'

    class MethodKind(Enum):
        MANAGED = 'Managed'
        ABSTRACT = 'Abstract'
        INTERFACE_MEMBER = 'InterfaceMember'
        DYNAMIC = 'Dynamic'
        NATIVE = 'Native'

    class InvocationState(Enum):
        IDLE = 'Idle'
        VALIDATING = 'Validating'
        BLOCKED = 'Blocked'
        EXECUTING = 'Executing'
        COMPLETED = 'Completed'
        FAULTED = 'Faulted'
        CANCELLED = 'Cancelled'

    class ErrorKind(Enum):
        VALIDATION = 'ValidationError'
        INSTANTIATION = 'InstantiationError'
        CONVERSION = 'ConversionError'
        INVOCATION_FAULT = 'InvocationFault'
        CANCELLED = 'Cancelled'

    class DependencyKind(Enum):
        MANAGED = 'Managed'
        NATIVE = 'Native'

    class DependencyStatus(Enum):
        RESOLVED = 'Resolved'
        UNRESOLVED = 'Unresolved'

    class MethodDefMask(IntEnum):
        """
        Sources:
        https://www.ecma-international.org/publications-and-standards/standards/ecma-335/
        https://docs.microsoft.com/en-us/dotnet/api/system.reflection.methodattributes?view=net-5.0
        """
        MEMBERACCESS = 7
        STATIC = 16
        FINAL = 32
        VIRTUAL = 64
        ABSTRACT = 1024
        SPECIALNAME = 2048
        PINVOKEIMPL = 8192

    class MethodDefMemberAccess(IntEnum):
        COMPILERCONTROLLED = 0
        PRIVATE = 1
        FAMANDASSEM = 2
        ASSEM = 3
        FAMILY = 4
        FAMORASSEM = 5
        PUBLIC = 6

    class MethodImplMask(IntEnum):
        CODETYPEMASK = 3
        NATIVE = 1
        RUNTIME = 3
        INTERNALCALL = 0x1000


class Struct:
    @dataclass(frozen=True)
    class UnresolvedToken:
        token: int

        def __str__(self):
            return f'<token 0x{self.token:08x}>'

    @dataclass(frozen=True)
    class SwitchOperand:
        """
        Jump table of a switch instruction; only the case count is kept.
        """
        count: int

        def __str__(self):
            return f'<switch {self.count} cases>'

    @dataclass(frozen=True)
    class Instruction:
        offset: int
        opcode: OpCode
        operand: Any = None
        size: int = 1

        def __str__(self):
            if self.operand is None:
                return f'IL_{self.offset:04x}: {self.opcode}'
            if self.opcode.operand_type in (OperandType.ShortInlineBrTarget, OperandType.InlineBrTarget):
                return f'IL_{self.offset:04x}: {self.opcode} IL_{self.operand:04x}'
            if isinstance(self.operand, str):
                return f'IL_{self.offset:04x}: {self.opcode} {self.operand!r}'
            return f'IL_{self.offset:04x}: {self.opcode} {self.operand}'

    @dataclass(frozen=True)
    class DecodedMethodBody:
        instructions: Tuple['Struct.Instruction', ...]
        truncated: bool = False

        def __iter__(self):
            return iter(self.instructions)

        def __len__(self):
            return len(self.instructions)

    @dataclass(frozen=True)
    class ClrHeader:
        """
        IMAGE_COR20_HEADER, without the trailing reserved directories.
        """
        cb: int
        major_runtime_version: int
        minor_runtime_version: int
        metadata_rva: int
        metadata_size: int
        flags: int
        entry_point_token: int
        resources_rva: int
        resources_size: int
        strong_name_signature_rva: int
        strong_name_signature_size: int

    @dataclass(frozen=True)
    class MethodHeader:
        is_fat: bool
        header_size: int
        code_size: int
        max_stack: int = 8
        flags: int = 0
        local_var_sig_token: int = 0

    @dataclass(frozen=True)
    class MethodSignature:
        has_this: bool
        generic_parameter_count: int
        return_type: str
        parameter_types: Tuple[str, ...]
        calling_convention: int = 0

    @dataclass(frozen=True)
    class MethodDescriptor:
        declaring_type: str
        name: str
        parameter_types: Tuple[str, ...] = ()
        return_type: str = 'System.Void'
        is_static: bool = False
        is_generic_definition: bool = False
        has_generic_arguments: bool = False
        contains_generic_parameters: bool = False
        assembly: str = ''
        token: int = 0
        rva: int = 0
        flags: int = 0
        parameter_names: Tuple[str, ...] = ()

        @property
        def id(self) -> str:
            return f'{self.declaring_type}::{self.name}({",".join(self.parameter_types)})'

        @property
        def display_name(self) -> str:
            return f'{self.declaring_type.rsplit(".", 1)[-1]}.{self.name}'

        @property
        def is_constructor(self) -> bool:
            return self.name in ('.ctor', '.cctor')

        def __str__(self):
            return self.id

    @dataclass(frozen=True)
    class FieldReference:
        declaring_type: str
        name: str
        field_type: str = ''

        def __str__(self):
            return f'{self.declaring_type}::{self.name}'

    @dataclass(frozen=True)
    class TypeReference:
        name: str

        def __str__(self):
            return self.name

    @dataclass(frozen=True)
    class CallGraphNode:
        id: str
        display_name: str
        is_external: bool = False

    @dataclass(frozen=True)
    class CallGraphEdge:
        from_id: str
        to_id: str
        call_kind: 'Type.CallKind'

    @dataclass(frozen=True)
    class ParameterSpec:
        name: str
        type: Any
        type_name: str
        position: int = 0
        is_optional: bool = False
        has_default: bool = False
        default_value: Any = None

    @dataclass(frozen=True)
    class InstanceConstructionPlan:
        target_type: str
        constructor: Any
        arguments: Tuple[Any, ...]
        depth: int

    @dataclass(frozen=True)
    class InvocationError:
        kind: 'Type.ErrorKind'
        code: str
        message: str
        exception_type: str = ''
        stack_trace: str = ''

    @dataclass(frozen=True)
    class InvocationOutcome:
        success: bool
        state: 'Type.InvocationState'
        return_value: Any = None
        has_value: bool = False
        error: Optional['Struct.InvocationError'] = None
        stdout: str = ''
        stderr: str = ''
        duration: float = 0.0

        def as_dict(self) -> Dict:
            result = {
                'success': self.success,
                'state': self.state.value,
                'has_value': self.has_value,
                'return_value': repr(self.return_value) if self.has_value else None,
                'stdout': self.stdout,
                'stderr': self.stderr,
                'duration': self.duration,
                'error': None
            }

            if self.error is not None:
                error = asdict(self.error)
                error['kind'] = self.error.kind.value
                result['error'] = error

            return result

    @dataclass(frozen=True)
    class DependencyRecord:
        name: str
        kind: 'Type.DependencyKind'
        status: 'Type.DependencyStatus'
        path: str = ''
        note: str = ''

    @dataclass
    class MetadataTableRow:
        """
        One row of a metadata table. Column values are reachable as attributes by their ECMA-335 names.
        """
        table: str
        rid: int
        values: Dict[str, int] = field(default_factory=dict)

        def __getattr__(self, item):
            values = self.__dict__.get('values', {})
            if item in values:
                return values[item]
            raise AttributeError(item)

