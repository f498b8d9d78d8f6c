import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from dotnetinvoker.errors import ConversionError
from dotnetinvoker.model import Type
from dotnetinvoker.parameters import ParameterSynthesizer

from fakes import (FakeArray, FakeType, spec, BOOLEAN, BROKEN_STRUCT, COLOR, DOUBLE, EMPTY_ENUM, GUID,
                   INT32, INT64, INT_ARRAY, OBJECT, POINT, STRING, URI)


@pytest.fixture
def synthesizer(host):
    return ParameterSynthesizer(host)


def test_explicit_input_wins(synthesizer):
    parameter = spec('count', INT32, is_optional=True, has_default=True, default_value=7)
    assert synthesizer.resolve(parameter, '42') == 42


def test_declared_default_before_auto_default(synthesizer):
    parameter = spec('count', INT32, is_optional=True, has_default=True, default_value=7)
    assert synthesizer.resolve(parameter) == 7


def test_declared_default_may_be_none(synthesizer):
    parameter = spec('name', STRING, is_optional=True, has_default=True, default_value=None)
    assert synthesizer.resolve(parameter) is None


def test_optional_without_default_gets_auto_default(synthesizer):
    assert synthesizer.resolve(spec('count', INT32, is_optional=True)) == 0


@pytest.mark.parametrize('type_handle, expected', [
    (INT32, 0),
    (INT64, 0),
    (BOOLEAN, False),
    (DOUBLE, 0.0),
    (STRING, ''),
    (GUID, UUID(int=0)),
    (COLOR, 'RED'),
    (EMPTY_ENUM, 'ZERO'),
    (POINT, ('Point', 0, 0)),
    (OBJECT, None),
    (URI, None),
])
def test_generate_default(synthesizer, type_handle, expected):
    assert synthesizer.generate_default(type_handle) == expected


def test_generate_default_array_is_empty(synthesizer):
    assert synthesizer.generate_default(INT_ARRAY) == FakeArray(INT32, [])


def test_generate_default_unbuildable_value_type(synthesizer):
    assert synthesizer.generate_default(BROKEN_STRUCT) is None


def test_generate_default_well_known_types(host):
    synthesizer = ParameterSynthesizer(host)
    assert synthesizer.generate_default(FakeType('System.Decimal', Type.TypeKind.VALUE)) == Decimal(0)
    assert synthesizer.generate_default(FakeType('System.DateTime', Type.TypeKind.VALUE)) == datetime.min
    assert synthesizer.generate_default(FakeType('System.TimeSpan', Type.TypeKind.VALUE)) == timedelta(0)
    assert synthesizer.generate_default(FakeType('System.Char', Type.TypeKind.VALUE)) == '\0'


@pytest.mark.parametrize('type_name, raw_input, expected', [
    ('System.Int32', '-17', -17),
    ('System.Int32', '0x10', 16),
    ('System.Int32', '-0x10', -16),
    ('System.Int32', '010', 10),
    ('System.Int64', '-007', -7),
    ('System.Byte', '255', 255),
    ('System.Int64', '9223372036854775807', 2 ** 63 - 1),
    ('System.Boolean', 'True', True),
    ('System.Boolean', 'false', False),
    ('System.Double', '2.5', 2.5),
    ('System.Char', 'x', 'x'),
    ('System.Decimal', '1.10', Decimal('1.10')),
    ('System.DateTime', '2020-01-02T03:04:05', datetime(2020, 1, 2, 3, 4, 5)),
    ('System.TimeSpan', '01:02:03', timedelta(hours=1, minutes=2, seconds=3)),
    ('System.TimeSpan', '-2.00:00:01.5', -timedelta(days=2, seconds=1.5)),
    ('System.Guid', '12345678-1234-5678-1234-567812345678', UUID('12345678-1234-5678-1234-567812345678')),
])
def test_convert_primitives(synthesizer, type_name, raw_input, expected):
    parameter = spec('value', FakeType(type_name, Type.TypeKind.VALUE))
    assert synthesizer.resolve(parameter, raw_input) == expected


def test_convert_string_is_verbatim(synthesizer):
    assert synthesizer.resolve(spec('text', STRING), '  spaced  ') == '  spaced  '


def test_convert_enum_by_name(synthesizer):
    assert synthesizer.resolve(spec('color', COLOR), 'green') == 'GREEN'


def test_convert_falls_back_to_host(synthesizer):
    custom = FakeType('Sample.Custom', Type.TypeKind.VALUE, converter=len)
    assert synthesizer.resolve(spec('value', custom), 'abc') == 3


@pytest.mark.parametrize('type_handle, raw_input', [
    (INT32, 'abc'),
    (INT32, '2147483648'),
    (FakeType('System.Byte', Type.TypeKind.VALUE), '-1'),
    (BOOLEAN, 'yes'),
    (FakeType('System.Char', Type.TypeKind.VALUE), 'ab'),
    (FakeType('System.Decimal', Type.TypeKind.VALUE), 'one'),
    (GUID, 'not-a-guid'),
    (COLOR, 'Purple'),
    (URI, 'http://example.com'),
])
def test_conversion_errors(synthesizer, type_handle, raw_input):
    with pytest.raises(ConversionError) as error:
        synthesizer.resolve(spec('value', type_handle), raw_input)

    assert error.value.parameter_name == 'value'
    assert error.value.target_type == type_handle.name
    assert error.value.raw_input == raw_input
    assert error.value.code == 'PARAM_MISMATCH'
    assert 'value' in error.value.message
