'''
Part of dotnetinvoker

Static tables: call opcodes, metadata table layouts, signature element types and tunables.
'''

# flake8: noqa

from dncil.cil.enums import OpCodeValue


# Instance synthesis gives up beyond this constructor nesting level
MAX_CONSTRUCTION_DEPTH = 10

DEFAULT_SUBGRAPH_DEPTH = 3

# Upper bound when peeling reflection wrapper exceptions (TargetInvocationException, AggregateException)
MAX_UNWRAP_DEPTH = 16

USER_STRING_TOKEN_TABLE = 0x70

VOID_TYPE_NAME = 'System.Void'

# Fat method header reading needs at most this many bytes
MAX_METHOD_HEADER_SIZE = 12

# Max string length reference:
# https://github.com/dotnet/roslyn/blob/main/src/Compilers/Core/Portable/PEWriter/MetadataWriter.cs#L51
MAX_DOTNET_STRING_LENGTH = 1024

METADATA_SIGNATURE = 0x424A5342

# Opcodes whose method operand is an outgoing call edge
CALL_OPCODES = {
    OpCodeValue.Call:     'call',
    OpCodeValue.Callvirt: 'virtual-call',
    OpCodeValue.Newobj:   'construct'
}

TABLE_ROW_VARIABLE_LENGTH_FIELDS = {
    'TypeDefOrRef':         ['TypeDef', 'TypeRef', 'TypeSpec'],
    'HasConstant':          ['Field', 'Param', 'Property'],
    'HasCustomAttribute':   ['MethodDef', 'Field', 'TypeRef', 'TypeDef', 'Param', 'InterfaceImpl', 'MemberRef',
                             'Module', 'DeclSecurity', 'Property', 'Event', 'StandAloneSig', 'ModuleRef', 'TypeSpec',
                             'Assembly', 'AssemblyRef', 'File', 'ExportedType', 'ManifestResource', 'GenericParam',
                             'GenericParamConstraint', 'MethodSpec'],
    'HasFieldMarshal':      ['Field', 'Param'],
    'HasDeclSecurity':      ['TypeDef', 'MethodDef', 'Assembly'],
    'MemberRefParent':      ['TypeDef', 'TypeRef', 'ModuleRef', 'MethodDef', 'TypeSpec'],
    'HasSemantics':         ['Event', 'Property'],
    'MethodDefOrRef':       ['MethodDef', 'MemberRef'],
    'MemberForwarded':      ['Field', 'MethodDef'],
    'Implementation':       ['File', 'AssemblyRef', 'ExportedType'],
    'CustomAttributeType':  ['MethodDef', 'MethodDef', 'MethodDef', 'MemberRef', 'MethodDef'],
    'ResolutionScope':      ['Module', 'ModuleRef', 'AssemblyRef', 'TypeRef'],
    'TypeOrMethodDef':      ['TypeDef', 'MethodDef']
}

METADATA_TABLE_INDEXES = {
    0:  'Module',
    1:  'TypeRef',
    2:  'TypeDef',
    3:  'FieldPtr',
    4:  'Field',
    5:  'MethodPtr',
    6:  'MethodDef',
    7:  'ParamPtr',
    8:  'Param',
    9:  'InterfaceImpl',
    10: 'MemberRef',
    11: 'Constant',
    12: 'CustomAttribute',
    13: 'FieldMarshal',
    14: 'DeclSecurity',
    15: 'ClassLayout',
    16: 'FieldLayout',
    17: 'StandAloneSig',
    18: 'EventMap',
    19: 'EventPtr',
    20: 'Event',
    21: 'PropertyMap',
    22: 'PropertyPtr',
    23: 'Property',
    24: 'MethodSemantics',
    25: 'MethodImpl',
    26: 'ModuleRef',
    27: 'TypeSpec',
    28: 'ImplMap',
    29: 'FieldRVA',
    30: 'EncLog',
    31: 'EncMap',
    32: 'Assembly',
    33: 'AssemblyProcessor',
    34: 'AssemblyOS',
    35: 'AssemblyRef',
    36: 'AssemblyRefProcessor',
    37: 'AssemblyRefOS',
    38: 'File',
    39: 'ExportedType',
    40: 'ManifestResource',
    41: 'NestedClass',
    42: 'GenericParam',
    43: 'MethodSpec',
    44: 'GenericParamConstraint'
}

METADATA_TABLE_INDEXES_REVERSE = {v: k for k, v in METADATA_TABLE_INDEXES.items()}

# Column layouts per table (ECMA-335, Partition II, chapter 22). Column kinds:
#   'u1', 'u2', 'u4'  - fixed size integers
#   'string', 'guid', 'blob'  - heap indexes
#   a table name  - simple index into that table
#   a TABLE_ROW_VARIABLE_LENGTH_FIELDS key  - coded index
METADATA_TABLE_SCHEMAS = {
    'Module':                   [('Generation', 'u2'), ('Name', 'string'), ('Mvid', 'guid'), ('EncId', 'guid'),
                                 ('EncBaseId', 'guid')],
    'TypeRef':                  [('ResolutionScope', 'ResolutionScope'), ('TypeName', 'string'),
                                 ('TypeNamespace', 'string')],
    'TypeDef':                  [('Flags', 'u4'), ('TypeName', 'string'), ('TypeNamespace', 'string'),
                                 ('Extends', 'TypeDefOrRef'), ('FieldList', 'Field'), ('MethodList', 'MethodDef')],
    'FieldPtr':                 [('Field', 'Field')],
    'Field':                    [('Flags', 'u2'), ('Name', 'string'), ('Signature', 'blob')],
    'MethodPtr':                [('Method', 'MethodDef')],
    'MethodDef':                [('RVA', 'u4'), ('ImplFlags', 'u2'), ('Flags', 'u2'), ('Name', 'string'),
                                 ('Signature', 'blob'), ('ParamList', 'Param')],
    'ParamPtr':                 [('Param', 'Param')],
    'Param':                    [('Flags', 'u2'), ('Sequence', 'u2'), ('Name', 'string')],
    'InterfaceImpl':            [('Class', 'TypeDef'), ('Interface', 'TypeDefOrRef')],
    'MemberRef':                [('Class', 'MemberRefParent'), ('Name', 'string'), ('Signature', 'blob')],
    'Constant':                 [('Type', 'u1'), ('Padding', 'u1'), ('Parent', 'HasConstant'), ('Value', 'blob')],
    'CustomAttribute':          [('Parent', 'HasCustomAttribute'), ('Type', 'CustomAttributeType'),
                                 ('Value', 'blob')],
    'FieldMarshal':             [('Parent', 'HasFieldMarshal'), ('NativeType', 'blob')],
    'DeclSecurity':             [('Action', 'u2'), ('Parent', 'HasDeclSecurity'), ('PermissionSet', 'blob')],
    'ClassLayout':              [('PackingSize', 'u2'), ('ClassSize', 'u4'), ('Parent', 'TypeDef')],
    'FieldLayout':              [('Offset', 'u4'), ('Field', 'Field')],
    'StandAloneSig':            [('Signature', 'blob')],
    'EventMap':                 [('Parent', 'TypeDef'), ('EventList', 'Event')],
    'EventPtr':                 [('Event', 'Event')],
    'Event':                    [('EventFlags', 'u2'), ('Name', 'string'), ('EventType', 'TypeDefOrRef')],
    'PropertyMap':              [('Parent', 'TypeDef'), ('PropertyList', 'Property')],
    'PropertyPtr':              [('Property', 'Property')],
    'Property':                 [('Flags', 'u2'), ('Name', 'string'), ('Type', 'blob')],
    'MethodSemantics':          [('Semantics', 'u2'), ('Method', 'MethodDef'), ('Association', 'HasSemantics')],
    'MethodImpl':               [('Class', 'TypeDef'), ('MethodBody', 'MethodDefOrRef'),
                                 ('MethodDeclaration', 'MethodDefOrRef')],
    'ModuleRef':                [('Name', 'string')],
    'TypeSpec':                 [('Signature', 'blob')],
    'ImplMap':                  [('MappingFlags', 'u2'), ('MemberForwarded', 'MemberForwarded'),
                                 ('ImportName', 'string'), ('ImportScope', 'ModuleRef')],
    'FieldRVA':                 [('RVA', 'u4'), ('Field', 'Field')],
    'EncLog':                   [('Token', 'u4'), ('FuncCode', 'u4')],
    'EncMap':                   [('Token', 'u4')],
    'Assembly':                 [('HashAlgId', 'u4'), ('MajorVersion', 'u2'), ('MinorVersion', 'u2'),
                                 ('BuildNumber', 'u2'), ('RevisionNumber', 'u2'), ('Flags', 'u4'),
                                 ('PublicKey', 'blob'), ('Name', 'string'), ('Culture', 'string')],
    'AssemblyProcessor':        [('Processor', 'u4')],
    'AssemblyOS':               [('OSPlatformID', 'u4'), ('OSMajorVersion', 'u4'), ('OSMinorVersion', 'u4')],
    'AssemblyRef':              [('MajorVersion', 'u2'), ('MinorVersion', 'u2'), ('BuildNumber', 'u2'),
                                 ('RevisionNumber', 'u2'), ('Flags', 'u4'), ('PublicKeyOrToken', 'blob'),
                                 ('Name', 'string'), ('Culture', 'string'), ('HashValue', 'blob')],
    'AssemblyRefProcessor':     [('Processor', 'u4'), ('AssemblyRef', 'AssemblyRef')],
    'AssemblyRefOS':            [('OSPlatformID', 'u4'), ('OSMajorVersion', 'u4'), ('OSMinorVersion', 'u4'),
                                 ('AssemblyRef', 'AssemblyRef')],
    'File':                     [('Flags', 'u4'), ('Name', 'string'), ('HashValue', 'blob')],
    'ExportedType':             [('Flags', 'u4'), ('TypeDefId', 'u4'), ('TypeName', 'string'),
                                 ('TypeNamespace', 'string'), ('Implementation', 'Implementation')],
    'ManifestResource':         [('Offset', 'u4'), ('Flags', 'u4'), ('Name', 'string'),
                                 ('Implementation', 'Implementation')],
    'NestedClass':              [('NestedClass', 'TypeDef'), ('EnclosingClass', 'TypeDef')],
    'GenericParam':             [('Number', 'u2'), ('Flags', 'u2'), ('Owner', 'TypeOrMethodDef'), ('Name', 'string')],
    'MethodSpec':               [('Method', 'MethodDefOrRef'), ('Instantiation', 'blob')],
    'GenericParamConstraint':   [('Owner', 'GenericParam'), ('Constraint', 'TypeDefOrRef')]
}

METADATA_TOKEN_TABLES = {
    0x00000000: 'Module',
    0x01000000: 'TypeRef',
    0x02000000: 'TypeDef',
    0x04000000: 'Field',
    0x06000000: 'MethodDef',
    0x08000000: 'Param',
    0x09000000: 'InterfaceImpl',
    0x0A000000: 'MemberRef',
    0x0C000000: 'CustomAttribute',
    0x0E000000: 'DeclSecurity',
    0x11000000: 'StandAloneSig',
    0x14000000: 'Event',
    0x17000000: 'Property',
    0x1A000000: 'ModuleRef',
    0x1B000000: 'TypeSpec',
    0x20000000: 'Assembly',
    0x23000000: 'AssemblyRef',
    0x26000000: 'File',
    0x27000000: 'ExportedType',
    0x28000000: 'ManifestResource',
    0x2A000000: 'GenericParam',
    0x2B000000: 'MethodSpec',
    0x2C000000: 'GenericParamConstraint'
}

SIGNATURE_ELEMENT_TYPES = {
    0x00: 'END',
    0x01: 'VOID',
    0x02: 'BOOLEAN',
    0x03: 'CHAR',
    0x04: 'I1',
    0x05: 'U1',
    0x06: 'I2',
    0x07: 'U2',
    0x08: 'I4',
    0x09: 'U4',
    0x0A: 'I8',
    0x0B: 'U8',
    0x0C: 'R4',
    0x0D: 'R8',
    0x0E: 'STRING',
    0x0F: 'PTR',
    0x10: 'BYREF',
    0x11: 'VALUETYPE',
    0x12: 'CLASS',
    0x13: 'VAR',
    0x14: 'ARRAY',
    0x15: 'GENERICINST',
    0x16: 'TYPEDBYREF',
    0x18: 'I',
    0x19: 'U',
    0x1B: 'FNPTR',
    0x1C: 'OBJECT',
    0x1D: 'SZARRAY',
    0x1E: 'MVAR',
    0x1F: 'CMOD_REQD',
    0x20: 'CMOD_OPT',
    0x41: 'SENTINEL',
    0x45: 'PINNED'
}

SIGNATURE_ELEMENT_TYPES_REVERSE = {v: k for k, v in SIGNATURE_ELEMENT_TYPES.items()}

# Element types that map directly to a framework type name
PRIMITIVE_ELEMENT_TYPE_NAMES = {
    0x01: 'System.Void',
    0x02: 'System.Boolean',
    0x03: 'System.Char',
    0x04: 'System.SByte',
    0x05: 'System.Byte',
    0x06: 'System.Int16',
    0x07: 'System.UInt16',
    0x08: 'System.Int32',
    0x09: 'System.UInt32',
    0x0A: 'System.Int64',
    0x0B: 'System.UInt64',
    0x0C: 'System.Single',
    0x0D: 'System.Double',
    0x0E: 'System.String',
    0x16: 'System.TypedReference',
    0x18: 'System.IntPtr',
    0x19: 'System.UIntPtr',
    0x1C: 'System.Object'
}

# C# keyword aliases used when formatting readable signatures
TYPE_NAME_ALIASES = {
    'System.Void':      'void',
    'System.Boolean':   'bool',
    'System.Char':      'char',
    'System.SByte':     'sbyte',
    'System.Byte':      'byte',
    'System.Int16':     'short',
    'System.UInt16':    'ushort',
    'System.Int32':     'int',
    'System.UInt32':    'uint',
    'System.Int64':     'long',
    'System.UInt64':    'ulong',
    'System.Single':    'float',
    'System.Double':    'double',
    'System.Decimal':   'decimal',
    'System.String':    'string',
    'System.Object':    'object'
}

# Referenced assemblies that ship with every runtime and are not looked up on disk
RUNTIME_PROVIDED_ASSEMBLY_PREFIXES = ('System.', 'Microsoft.')
RUNTIME_PROVIDED_ASSEMBLIES = {'mscorlib', 'netstandard', 'System'}
