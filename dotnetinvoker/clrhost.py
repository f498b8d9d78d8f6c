"""
Part of dotnetinvoker

RuntimeHost over the .NET runtime through pythonnet (System.Reflection).

References:
    pythonnet
        https://pythonnet.github.io/pythonnet/
    .NET reflection
        https://learn.microsoft.com/en-us/dotnet/api/system.reflection.methodbase
"""

import os
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Iterator, List, Optional, Tuple
from uuid import UUID

import pythonnet

from .logger import get_logger
from .model import Type, Struct
from .host import RuntimeHost, OutputCapture
from .constants import VOID_TYPE_NAME


# Best effort: reflection reports runtime-generated methods under these type names
DYNAMIC_METHOD_TYPE_NAMES = {'DynamicMethod', 'RTDynamicMethod'}

TYPED_TASK_DEFINITION = 'System.Threading.Tasks.Task`1'
VOID_TASK_RESULT = 'System.Threading.Tasks.VoidTaskResult'
VALUE_TASK_PREFIX = 'System.Threading.Tasks.ValueTask'

TICKS_PER_SECOND = 10 ** 7


class ClrHost(RuntimeHost):
    def __init__(self, runtime: Optional[str] = None, log_level: int = logging.INFO):
        """
        :param runtime: pythonnet runtime to load ("coreclr", "netfx", "mono"); None keeps pythonnet's default.
                        Ignored when a runtime is already loaded in this process.
        """
        self.runtime = runtime
        self.logger = get_logger('clrhost_logger', level=log_level)
        self._clr: Optional[SimpleNamespace] = None

    @property
    def clr(self) -> SimpleNamespace:
        if self._clr is None:
            self._clr = self._load_clr()

        return self._clr

    def _load_clr(self) -> SimpleNamespace:
        if pythonnet.get_runtime_info() is None:
            pythonnet.load(self.runtime)
            self.logger.debug(f'loaded .NET runtime: {pythonnet.get_runtime_info()}')

        import clr  # noqa: F401
        from System import (Activator, AggregateException, Array, Console, Convert, DateTime, DBNull, Decimal as
                            ClrDecimal, Enum, Guid, Object, TimeSpan)
        from System.Globalization import CultureInfo
        from System.IO import StringWriter
        from System.Reflection import (Assembly, BindingFlags, ReflectionTypeLoadException,
                                       TargetInvocationException)
        from System.Threading.Tasks import Task

        return SimpleNamespace(
            Activator=Activator, AggregateException=AggregateException, Array=Array, Console=Console,
            Convert=Convert, DateTime=DateTime, DBNull=DBNull, Decimal=ClrDecimal, Enum=Enum, Guid=Guid,
            Object=Object, TimeSpan=TimeSpan, CultureInfo=CultureInfo, StringWriter=StringWriter,
            Assembly=Assembly, BindingFlags=BindingFlags, ReflectionTypeLoadException=ReflectionTypeLoadException,
            TargetInvocationException=TargetInvocationException, Task=Task
        )

    # Loader

    def load_assembly(self, path: str) -> Any:
        return self.clr.Assembly.LoadFrom(os.path.abspath(path))

    def get_types(self, assembly: Any) -> List[Any]:
        try:
            return list(assembly.GetTypes())
        except self.clr.ReflectionTypeLoadException as e:
            self.logger.debug(f'Some types of {assembly.FullName} could not be loaded - {e.Message}')
            return [t for t in e.Types if t is not None]

    def get_methods(self, assembly: Any) -> List[Any]:
        flags = self.clr.BindingFlags
        binding = flags.Public | flags.NonPublic | flags.Instance | flags.Static | flags.DeclaredOnly
        methods = []

        for type_handle in self.get_types(assembly):
            try:
                methods.extend(type_handle.GetMethods(binding))
            except Exception as e:
                self.logger.debug(f'Cannot list methods of {type_handle.FullName} - {e}')

        return methods

    def find_method(self, assembly: Any, token: int) -> Any:
        return assembly.ManifestModule.ResolveMethod(token)

    def find_type(self, assembly: Any, type_name: str) -> Any:
        return assembly.GetType(type_name, True)

    # Types

    def type_name(self, type_handle: Any) -> str:
        return type_handle.FullName or type_handle.Name

    def type_kind(self, type_handle: Any) -> Type.TypeKind:
        if type_handle.FullName == 'System.String':
            return Type.TypeKind.STRING
        if type_handle.IsEnum:
            return Type.TypeKind.ENUM
        if type_handle.IsArray:
            return Type.TypeKind.ARRAY
        if type_handle.IsInterface:
            return Type.TypeKind.INTERFACE
        if type_handle.IsAbstract:
            return Type.TypeKind.ABSTRACT
        if type_handle.IsValueType:
            return Type.TypeKind.VALUE

        return Type.TypeKind.CLASS

    def enum_members(self, type_handle: Any) -> List[Tuple[str, Any]]:
        flags = self.clr.BindingFlags
        # Fields come back in declaration order, unlike Enum.GetValues which sorts by value
        fields = type_handle.GetFields(flags.Public | flags.Static)
        return [(field.Name, field.GetValue(None)) for field in fields]

    def element_type(self, type_handle: Any) -> Any:
        return type_handle.GetElementType()

    def new_array(self, element_type: Any, length: int = 0) -> Any:
        return self.clr.Array.CreateInstance(element_type, length)

    def create_default(self, type_handle: Any) -> Any:
        return self.clr.Activator.CreateInstance(type_handle)

    def convert(self, raw_input: str, type_handle: Any) -> Any:
        return self.clr.Convert.ChangeType(raw_input, type_handle, self.clr.CultureInfo.InvariantCulture)

    # Constructors and methods

    def constructors(self, type_handle: Any) -> List[Any]:
        return list(type_handle.GetConstructors())

    def parameters(self, method: Any) -> List[Struct.ParameterSpec]:
        result = []

        for parameter in method.GetParameters():
            has_default = bool(parameter.HasDefaultValue)
            default_value = parameter.DefaultValue if has_default else None
            if isinstance(default_value, type(self.clr.DBNull.Value)):
                default_value = None
            result.append(Struct.ParameterSpec(
                name=parameter.Name or f'arg{parameter.Position}',
                type=parameter.ParameterType,
                type_name=self.type_name(parameter.ParameterType),
                position=parameter.Position,
                is_optional=bool(parameter.IsOptional),
                has_default=has_default,
                default_value=default_value
            ))

        return result

    def _marshal(self, value: Any, type_handle: Any) -> Any:
        """
        Turn a Python value into a .NET value of the given parameter type.
        """
        if value is None or hasattr(value, 'GetType'):
            return value

        if type_handle.IsByRef:
            type_handle = type_handle.GetElementType()

        clr = self.clr
        invariant = clr.CultureInfo.InvariantCulture

        if isinstance(value, UUID):
            return clr.Guid.Parse(str(value))
        if isinstance(value, datetime):
            if value == datetime.min:
                return clr.DateTime.MinValue
            return clr.DateTime.Parse(value.isoformat(), invariant)
        if isinstance(value, timedelta):
            ticks = (value.days * 86400 + value.seconds) * TICKS_PER_SECOND + value.microseconds * 10
            return clr.TimeSpan.FromTicks(ticks)
        if isinstance(value, Decimal):
            return clr.Decimal.Parse(str(value), invariant)
        if isinstance(value, str) and type_handle.FullName == 'System.String':
            return value
        if isinstance(value, (bool, int, float, str)) and type_handle.IsPrimitive:
            return clr.Convert.ChangeType(str(value), type_handle, invariant)

        return value

    def _arguments(self, method: Any, arguments: List[Any]) -> Any:
        parameter_types = [parameter.ParameterType for parameter in method.GetParameters()]
        values = [self._marshal(value, parameter_type) for value, parameter_type in zip(arguments, parameter_types)]

        return self.clr.Array[self.clr.Object](values)

    def construct(self, constructor: Any, arguments: List[Any]) -> Any:
        return constructor.Invoke(self._arguments(constructor, arguments))

    def declaring_type(self, method: Any) -> Any:
        return method.DeclaringType

    def describe(self, method: Any) -> Struct.MethodDescriptor:
        declaring_type = method.DeclaringType
        return_type = getattr(method, 'ReturnType', None)

        return Struct.MethodDescriptor(
            declaring_type=self.type_name(declaring_type) if declaring_type is not None else '<Dynamic>',
            name=method.Name,
            parameter_types=tuple(self.type_name(p.ParameterType) for p in method.GetParameters()),
            return_type=self.type_name(return_type) if return_type is not None else VOID_TYPE_NAME,
            is_static=bool(method.IsStatic),
            is_generic_definition=bool(method.IsGenericMethodDefinition),
            has_generic_arguments=bool(method.IsGenericMethod and not method.IsGenericMethodDefinition),
            contains_generic_parameters=bool(method.ContainsGenericParameters),
            assembly=declaring_type.Assembly.GetName().Name if declaring_type is not None else '',
            token=self._metadata_token(method)
        )

    @staticmethod
    def _metadata_token(method: Any) -> int:
        try:
            return int(method.MetadataToken)
        except Exception:
            # Runtime-generated methods have no token
            return 0

    def method_kind(self, method: Any) -> Type.MethodKind:
        if method.GetType().Name in DYNAMIC_METHOD_TYPE_NAMES or method.DeclaringType is None:
            return Type.MethodKind.DYNAMIC

        try:
            body = method.GetMethodBody()
        except Exception as e:
            self.logger.debug(f'GetMethodBody failed for {method.Name} - {e}')
            body = None

        if body is not None:
            return Type.MethodKind.MANAGED
        if method.IsAbstract:
            return Type.MethodKind.ABSTRACT
        if method.DeclaringType.IsInterface:
            return Type.MethodKind.INTERFACE_MEMBER

        return Type.MethodKind.NATIVE

    def invoke(self, method: Any, instance: Any, arguments: List[Any]) -> Any:
        return method.Invoke(instance, self._arguments(method, arguments))

    # Results and failures

    def is_awaitable(self, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, self.clr.Task):
            return True
        if hasattr(value, 'GetType') and str(value.GetType().FullName or '').startswith(VALUE_TASK_PREFIX):
            return True

        return super().is_awaitable(value)

    def _typed_task_result_type(self, task: Any) -> Optional[Any]:
        current = task.GetType()
        while current is not None:
            if current.IsGenericType and current.GetGenericTypeDefinition().FullName == TYPED_TASK_DEFINITION:
                return current.GetGenericArguments()[0]
            current = current.BaseType

        return None

    def await_result(self, value: Any) -> Tuple[bool, Any]:
        if not hasattr(value, 'GetType'):
            return super().await_result(value)

        if str(value.GetType().FullName or '').startswith(VALUE_TASK_PREFIX):
            value = value.AsTask()

        value.Wait()
        result_type = self._typed_task_result_type(value)
        if result_type is None or result_type.FullName == VOID_TASK_RESULT:
            return False, None

        return True, value.GetType().GetProperty('Result').GetValue(value)

    def unwrap_exception(self, exception: BaseException) -> Optional[BaseException]:
        clr = self.clr
        if isinstance(exception, (clr.TargetInvocationException, clr.AggregateException)):
            return exception.InnerException

        return None

    def describe_exception(self, exception: BaseException) -> Tuple[str, str, str]:
        if hasattr(exception, 'GetType') and hasattr(exception, 'StackTrace'):
            return exception.GetType().FullName, str(exception.Message), str(exception.StackTrace or '')

        return super().describe_exception(exception)

    @contextmanager
    def capture_output(self) -> Iterator[OutputCapture]:
        console = self.clr.Console

        with super().capture_output() as capture:
            original_out, original_error = console.Out, console.Error
            managed_out, managed_error = self.clr.StringWriter(), self.clr.StringWriter()
            console.SetOut(managed_out)
            console.SetError(managed_error)
            try:
                yield capture
            finally:
                console.SetOut(original_out)
                console.SetError(original_error)
                capture.append(managed_out.ToString(), managed_error.ToString())
