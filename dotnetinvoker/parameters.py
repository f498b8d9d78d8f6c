"""
Part of dotnetinvoker

Parameter synthesis: explicit textual input, declared default or a type-directed auto default, in that order.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from .logger import get_logger
from .errors import ConversionError
from .model import Type, Struct
from .host import RuntimeHost


GUID_TYPE_NAME = 'System.Guid'

# Auto default per type name. Values are Python stand-ins the host marshals to the runtime type.
TYPE_DEFAULTS: Dict[str, Any] = {
    'System.Int32':     0,
    'System.Int64':     0,
    'System.Int16':     0,
    'System.Byte':      0,
    'System.SByte':     0,
    'System.UInt16':    0,
    'System.UInt32':    0,
    'System.UInt64':    0,
    'System.Boolean':   False,
    'System.Double':    0.0,
    'System.Single':    0.0,
    'System.Decimal':   Decimal(0),
    'System.Char':      '\0',
    'System.String':    '',
    'System.Guid':      UUID(int=0),
    'System.DateTime':  datetime.min,
    'System.TimeSpan':  timedelta(0),
    'System.Object':    None
}

INTEGER_RANGES: Dict[str, Tuple[int, int]] = {
    'System.SByte':     (-2 ** 7, 2 ** 7 - 1),
    'System.Byte':      (0, 2 ** 8 - 1),
    'System.Int16':     (-2 ** 15, 2 ** 15 - 1),
    'System.UInt16':    (0, 2 ** 16 - 1),
    'System.Int32':     (-2 ** 31, 2 ** 31 - 1),
    'System.UInt32':    (0, 2 ** 32 - 1),
    'System.Int64':     (-2 ** 63, 2 ** 63 - 1),
    'System.UInt64':    (0, 2 ** 64 - 1)
}


def _convert_integer(type_name: str) -> Callable[[str], int]:
    low, high = INTEGER_RANGES[type_name]

    def convert(raw_input: str) -> int:
        text = raw_input.strip()
        # Hex only with an explicit prefix; decimal input may carry leading zeros
        base = 16 if text.lower().lstrip('+-').startswith('0x') else 10
        value = int(text, base)
        if not low <= value <= high:
            raise ValueError(f'{value} is outside of [{low}, {high}]')
        return value

    return convert


def _convert_boolean(raw_input: str) -> bool:
    value = raw_input.strip().lower()
    if value == 'true':
        return True
    if value == 'false':
        return False

    raise ValueError('expected "true" or "false"')


def _convert_char(raw_input: str) -> str:
    if len(raw_input) != 1:
        raise ValueError('expected exactly one character')

    return raw_input


def _convert_decimal(raw_input: str) -> Decimal:
    try:
        return Decimal(raw_input.strip())
    except InvalidOperation as e:
        raise ValueError(f'invalid decimal literal {raw_input!r}') from e


def _convert_timespan(raw_input: str) -> timedelta:
    # [-][d.]hh:mm:ss[.fffffff] as printed by TimeSpan.ToString()
    value = raw_input.strip()
    sign = -1 if value.startswith('-') else 1
    value = value.lstrip('-')

    days = 0
    time_part = value
    if '.' in value.split(':', 1)[0]:
        day_part, time_part = value.split('.', 1)
        days = int(day_part)

    hours, minutes, seconds = time_part.split(':')

    return sign * timedelta(days=days, hours=int(hours), minutes=int(minutes), seconds=float(seconds))


PRIMITIVE_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    **{type_name: _convert_integer(type_name) for type_name in INTEGER_RANGES},
    'System.Boolean':   _convert_boolean,
    'System.Char':      _convert_char,
    'System.Double':    float,
    'System.Single':    float,
    'System.Decimal':   _convert_decimal,
    'System.DateTime':  datetime.fromisoformat,
    'System.TimeSpan':  _convert_timespan
}


class ParameterSynthesizer(object):
    def __init__(self, host: RuntimeHost, log_level: int = logging.INFO):
        self.host = host
        self.logger = get_logger('parameters_logger', level=log_level)

    def resolve(self, spec: Struct.ParameterSpec, raw_input: Optional[str] = None) -> Any:
        """
        Value for one parameter. Priority is fixed: explicit input, then declared default, then auto default.
        Raises ConversionError when explicit input cannot be converted.
        """
        if raw_input is not None:
            return self.convert(spec, raw_input)

        if spec.is_optional and spec.has_default:
            return spec.default_value

        return self.generate_default(spec.type)

    def convert(self, spec: Struct.ParameterSpec, raw_input: str) -> Any:
        type_kind = self.host.type_kind(spec.type)

        if type_kind == Type.TypeKind.STRING:
            return raw_input

        try:
            if type_kind == Type.TypeKind.ENUM:
                return self._convert_enum(spec.type, raw_input)

            if spec.type_name == GUID_TYPE_NAME:
                return UUID(raw_input.strip())

            converter = PRIMITIVE_CONVERTERS.get(spec.type_name)
            if converter is not None:
                return converter(raw_input)

            return self.host.convert(raw_input, spec.type)
        except ConversionError:
            raise
        except Exception as e:
            raise ConversionError(spec.name, spec.type_name, raw_input, str(e)) from e

    def _convert_enum(self, type_handle: Any, raw_input: str) -> Any:
        wanted = raw_input.strip().lower()
        for name, value in self.host.enum_members(type_handle):
            if name.lower() == wanted:
                return value

        raise ValueError(f'no enum member named {raw_input!r}')

    def generate_default(self, type_handle: Any) -> Any:
        """
        Type-directed default. None for a value type means no default could be built and the call will likely fail.
        """
        type_name = self.host.type_name(type_handle)
        if type_name in TYPE_DEFAULTS:
            return TYPE_DEFAULTS[type_name]

        type_kind = self.host.type_kind(type_handle)

        if type_kind == Type.TypeKind.ENUM:
            members = self.host.enum_members(type_handle)
            if members:
                return members[0][1]
            return self._create_default(type_handle, type_name)

        if type_kind == Type.TypeKind.ARRAY:
            return self.host.new_array(self.host.element_type(type_handle), 0)

        if type_kind == Type.TypeKind.STRING:
            return ''

        if type_kind != Type.TypeKind.VALUE:
            return None

        return self._create_default(type_handle, type_name)

    def _create_default(self, type_handle: Any, type_name: str) -> Any:
        try:
            return self.host.create_default(type_handle)
        except Exception as e:
            self.logger.debug(f'No default instance for value type {type_name} - {e}')

        return None
