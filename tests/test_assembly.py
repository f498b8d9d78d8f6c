import pytest

from dotnetinvoker.assembly import DotNetAssembly, format_signature, make_token, short_type_name
from dotnetinvoker.model import Struct


def method_named(assembly, name):
    return next(method for method in assembly.methods() if method.name == name)


def test_make_token():
    assert make_token('MethodDef', 2) == 0x06000002
    assert make_token('MemberRef', 1) == 0x0A000001


def test_short_type_name():
    assert short_type_name('System.Int32') == 'int'
    assert short_type_name('Sample.Program') == 'Program'
    assert short_type_name('Program') == 'Program'


def test_assembly_name(sample_assembly):
    assert sample_assembly.name == 'Sample'


def test_methods(sample_assembly):
    methods = sample_assembly.methods()
    assert [method.name for method in methods] == ['Main', 'Helper', 'Recurse', '.ctor', 'MessageBox', 'Identity']
    assert all(method.declaring_type == 'Sample.Program' for method in methods)
    assert all(method.assembly == 'Sample' for method in methods)


def test_method_descriptor(sample_assembly):
    helper = sample_assembly.find_method(0x06000002)
    assert helper.id == 'Sample.Program::Helper(System.Int32)'
    assert helper.display_name == 'Program.Helper'
    assert helper.return_type == 'System.Int32'
    assert helper.parameter_names == ('value',)
    assert helper.is_static
    assert helper.rva == 0x2070
    assert not helper.is_generic_definition


def test_constructor_descriptor(sample_assembly):
    constructor = method_named(sample_assembly, '.ctor')
    assert constructor.is_constructor
    assert not constructor.is_static
    assert constructor.id == 'Sample.Program::.ctor()'


def test_generic_method_definition(sample_assembly):
    identity = method_named(sample_assembly, 'Identity')
    assert identity.is_generic_definition
    assert identity.contains_generic_parameters
    assert identity.parameter_types == ('!!0',)


def test_find_method_rejects_other_tokens(sample_assembly):
    with pytest.raises(KeyError):
        sample_assembly.find_method(0x0A000001)


def test_format_signature(sample_assembly):
    assert format_signature(sample_assembly.find_method(0x06000002)) == 'public static int Helper(int value)'
    assert format_signature(sample_assembly.find_method(0x06000003)) == 'private static void Recurse()'
    assert format_signature(sample_assembly.find_method(0x06000004)) == 'public Program()'


def test_format_signature_without_flags():
    method = Struct.MethodDescriptor('System.Console', 'WriteLine', ('System.String',), is_static=True)
    assert format_signature(method) == 'static void WriteLine(string)'


def test_resolve_member_ref(sample_assembly):
    write_line = sample_assembly.resolve_token(0x0A000001)
    assert isinstance(write_line, Struct.MethodDescriptor)
    assert write_line.id == 'System.Console::WriteLine(System.String)'
    assert write_line.assembly == 'mscorlib'
    assert write_line.is_static
    assert write_line.token == 0x0A000001

    object_constructor = sample_assembly.resolve_token(0x0A000002)
    assert object_constructor.id == 'System.Object::.ctor()'
    assert not object_constructor.is_static


def test_resolve_method_spec(sample_assembly):
    instance = sample_assembly.resolve_token(0x2B000001)
    assert instance.id == 'Sample.Program::Identity(System.Int32)'
    assert instance.return_type == 'System.Int32'
    assert instance.has_generic_arguments
    assert not instance.is_generic_definition
    assert not instance.contains_generic_parameters
    assert instance.token == 0x2B000001


def test_resolve_types_and_strings(sample_assembly):
    assert sample_assembly.resolve_token(0x70000001) == 'Hi'
    assert sample_assembly.resolve_token(0x02000002) == Struct.TypeReference('Sample.Program')
    assert sample_assembly.resolve_token(0x01000002) == Struct.TypeReference('System.Console')


def test_resolve_invalid_tokens(sample_assembly):
    with pytest.raises(KeyError):
        sample_assembly.resolve_token(0x1A000001)
    with pytest.raises(KeyError):
        sample_assembly.resolve_token(0x06000063)


def test_decode_method(sample_assembly):
    decoded = sample_assembly.decode_method(sample_assembly.find_method(0x06000001))
    assert [i.opcode.name for i in decoded] == ['ldstr', 'call', 'ldc.i4.1', 'call', 'pop', 'ret']
    assert decoded.instructions[0].operand == 'Hi'
    assert decoded.instructions[1].operand.id == 'System.Console::WriteLine(System.String)'
    assert decoded.instructions[3].operand == sample_assembly.find_method(0x06000002)
    assert str(decoded.instructions[0]) == "IL_0000: ldstr 'Hi'"


def test_decode_method_without_body(sample_assembly):
    assert sample_assembly.decode_method(method_named(sample_assembly, 'MessageBox')) is None
    assert sample_assembly.decode_method(sample_assembly.resolve_token(0x0A000001)) is None


def test_decode_method_with_corrupt_body(sample_metadata):
    assembly = DotNetAssembly(sample_metadata, lambda rva: b'\x12\x00')
    assert assembly.decode_method(assembly.find_method(0x06000001)) is None


def test_references(sample_assembly):
    assert sample_assembly.get_references() == ['mscorlib']
    assert sample_assembly.get_unmanaged_modules() == ['user32.dll']
