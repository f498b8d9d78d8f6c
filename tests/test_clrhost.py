from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace
from uuid import UUID

import pytest

from dotnetinvoker.clrhost import ClrHost
from dotnetinvoker.model import Type


def clr_type(full_name, **members):
    attributes = dict(IsEnum=False, IsArray=False, IsInterface=False, IsAbstract=False, IsValueType=False,
                      IsPrimitive=False, IsByRef=False, IsGenericType=False, BaseType=None)
    attributes.update(members)
    return SimpleNamespace(FullName=full_name, Name=full_name.rsplit('.', 1)[-1], **attributes)


STRING_TYPE = clr_type('System.String')
INT32_TYPE = clr_type('System.Int32', IsValueType=True, IsPrimitive=True)
TASK_TYPE = clr_type('System.Threading.Tasks.Task')
TYPED_TASK_DEFINITION = SimpleNamespace(FullName='System.Threading.Tasks.Task`1')


def typed_task_type(result_type, full_name=None, base_type=TASK_TYPE):
    return clr_type(full_name or f'System.Threading.Tasks.Task`1[[{result_type.FullName}]]',
                    IsGenericType=True, BaseType=base_type,
                    GetGenericTypeDefinition=lambda: TYPED_TASK_DEFINITION,
                    GetGenericArguments=lambda: [result_type],
                    GetProperty=lambda name: SimpleNamespace(GetValue=lambda task: task.result))


class ClrTask:
    def __init__(self, type_handle, result=None):
        self.type_handle = type_handle
        self.result = result
        self.waited = False

    def GetType(self):
        return self.type_handle

    def Wait(self):
        self.waited = True


class ClrValueTask:
    def __init__(self, task):
        self.task = task

    def GetType(self):
        return clr_type('System.Threading.Tasks.ValueTask`1[[System.Int32]]')

    def AsTask(self):
        return self.task


class TargetInvocationException(Exception):
    def __init__(self, inner):
        super().__init__('Exception has been thrown by the target of an invocation.')
        self.InnerException = inner


class AggregateException(TargetInvocationException):
    pass


class ManagedException(Exception):
    Message = 'Access denied'
    StackTrace = '   at Sample.Program.Main()'

    def GetType(self):
        return clr_type('System.UnauthorizedAccessException')


class DBNullValue:
    pass


@pytest.fixture
def clr_host():
    host = ClrHost()
    host._clr = SimpleNamespace(
        Array={'Object': list},
        Object='Object',
        Guid=SimpleNamespace(Parse=lambda text: ('Guid', text)),
        DateTime=SimpleNamespace(MinValue='DateTime.MinValue', Parse=lambda text, culture: ('DateTime', text)),
        TimeSpan=SimpleNamespace(FromTicks=lambda ticks: ('TimeSpan', ticks)),
        Decimal=SimpleNamespace(Parse=lambda text, culture: ('Decimal', text)),
        Convert=SimpleNamespace(ChangeType=lambda text, type_handle, culture: (type_handle.FullName, text)),
        CultureInfo=SimpleNamespace(InvariantCulture='invariant'),
        DBNull=SimpleNamespace(Value=DBNullValue()),
        Task=ClrTask,
        TargetInvocationException=TargetInvocationException,
        AggregateException=AggregateException
    )
    return host


@pytest.mark.parametrize('type_handle, kind', [
    (STRING_TYPE, Type.TypeKind.STRING),
    (clr_type('System.DayOfWeek', IsEnum=True, IsValueType=True), Type.TypeKind.ENUM),
    (clr_type('System.Int32[]', IsArray=True), Type.TypeKind.ARRAY),
    (clr_type('System.IDisposable', IsInterface=True, IsAbstract=True), Type.TypeKind.INTERFACE),
    (clr_type('System.IO.Stream', IsAbstract=True), Type.TypeKind.ABSTRACT),
    (INT32_TYPE, Type.TypeKind.VALUE),
    (clr_type('System.Uri'), Type.TypeKind.CLASS),
])
def test_type_kind(clr_host, type_handle, kind):
    assert clr_host.type_kind(type_handle) == kind


@pytest.mark.parametrize('value, type_handle, expected', [
    (None, INT32_TYPE, None),
    (UUID(int=1), clr_type('System.Guid', IsValueType=True), ('Guid', '00000000-0000-0000-0000-000000000001')),
    (datetime.min, clr_type('System.DateTime', IsValueType=True), 'DateTime.MinValue'),
    (datetime(2020, 1, 2, 3, 4, 5), clr_type('System.DateTime', IsValueType=True), ('DateTime', '2020-01-02T03:04:05')),
    (timedelta(seconds=1, microseconds=5), clr_type('System.TimeSpan', IsValueType=True), ('TimeSpan', 10000050)),
    (Decimal('1.10'), clr_type('System.Decimal', IsValueType=True), ('Decimal', '1.10')),
    ('text', STRING_TYPE, 'text'),
    (42, INT32_TYPE, ('System.Int32', '42')),
    (True, clr_type('System.Boolean', IsValueType=True, IsPrimitive=True), ('System.Boolean', 'True')),
    (7, clr_type('System.Int32&', IsByRef=True, GetElementType=lambda: INT32_TYPE), ('System.Int32', '7')),
    ([1, 2], clr_type('System.Collections.Generic.List`1'), [1, 2]),
])
def test_marshal(clr_host, value, type_handle, expected):
    assert clr_host._marshal(value, type_handle) == expected


def test_marshal_keeps_managed_objects(clr_host):
    managed = ClrTask(TASK_TYPE)
    assert clr_host._marshal(managed, INT32_TYPE) is managed


def test_invoke_marshals_arguments(clr_host):
    calls = []
    method = SimpleNamespace(
        GetParameters=lambda: [SimpleNamespace(ParameterType=INT32_TYPE), SimpleNamespace(ParameterType=STRING_TYPE)],
        Invoke=lambda instance, arguments: calls.append((instance, arguments)) or 'result'
    )

    assert clr_host.invoke(method, 'receiver', [5, 'five']) == 'result'
    assert calls == [('receiver', [('System.Int32', '5'), 'five'])]


def test_parameters(clr_host):
    constructor = SimpleNamespace(GetParameters=lambda: [
        SimpleNamespace(Name='count', ParameterType=INT32_TYPE, Position=0, IsOptional=True,
                        HasDefaultValue=True, DefaultValue=3),
        SimpleNamespace(Name=None, ParameterType=STRING_TYPE, Position=1, IsOptional=False,
                        HasDefaultValue=True, DefaultValue=clr_host.clr.DBNull.Value)
    ])

    count, second = clr_host.parameters(constructor)
    assert (count.name, count.type_name, count.has_default, count.default_value) == ('count', 'System.Int32', True, 3)
    assert second.name == 'arg1'
    assert second.default_value is None


def test_describe(clr_host):
    assembly = SimpleNamespace(GetName=lambda: SimpleNamespace(Name='Sample'))
    declaring_type = clr_type('Sample.Program', Assembly=assembly)
    method = SimpleNamespace(Name='Helper', DeclaringType=declaring_type, ReturnType=INT32_TYPE,
                             GetParameters=lambda: [SimpleNamespace(ParameterType=INT32_TYPE)],
                             IsStatic=True, IsGenericMethodDefinition=False, IsGenericMethod=False,
                             ContainsGenericParameters=False, MetadataToken=0x06000002)

    descriptor = clr_host.describe(method)
    assert descriptor.id == 'Sample.Program::Helper(System.Int32)'
    assert descriptor.return_type == 'System.Int32'
    assert descriptor.assembly == 'Sample'
    assert descriptor.token == 0x06000002


def test_describe_constructor_has_void_return_type(clr_host):
    assembly = SimpleNamespace(GetName=lambda: SimpleNamespace(Name='Sample'))
    constructor = SimpleNamespace(Name='.ctor', DeclaringType=clr_type('Sample.Program', Assembly=assembly),
                                  GetParameters=lambda: [], IsStatic=False, IsGenericMethodDefinition=False,
                                  IsGenericMethod=False, ContainsGenericParameters=False, MetadataToken=0x06000004)

    assert clr_host.describe(constructor).return_type == 'System.Void'


def reflected_method(type_name='RuntimeMethodInfo', declaring_type=clr_type('Sample.Program'), body=None,
                     is_abstract=False):
    def get_method_body():
        if isinstance(body, Exception):
            raise body
        return body

    return SimpleNamespace(Name='Run', GetType=lambda: clr_type(f'System.Reflection.{type_name}'),
                           DeclaringType=declaring_type, GetMethodBody=get_method_body, IsAbstract=is_abstract)


@pytest.mark.parametrize('method, kind', [
    (reflected_method(body=object()), Type.MethodKind.MANAGED),
    (reflected_method(type_name='RTDynamicMethod'), Type.MethodKind.DYNAMIC),
    (reflected_method(declaring_type=None), Type.MethodKind.DYNAMIC),
    (reflected_method(is_abstract=True), Type.MethodKind.ABSTRACT),
    (reflected_method(declaring_type=clr_type('Sample.IRunner', IsInterface=True)), Type.MethodKind.INTERFACE_MEMBER),
    (reflected_method(body=RuntimeError('no body')), Type.MethodKind.NATIVE),
    (reflected_method(), Type.MethodKind.NATIVE),
])
def test_method_kind(clr_host, method, kind):
    assert clr_host.method_kind(method) == kind


def test_is_awaitable(clr_host):
    assert clr_host.is_awaitable(ClrTask(TASK_TYPE))
    assert clr_host.is_awaitable(ClrValueTask(ClrTask(TASK_TYPE)))
    assert not clr_host.is_awaitable(None)
    assert not clr_host.is_awaitable(42)


def test_typed_task_result(clr_host):
    task = ClrTask(typed_task_type(INT32_TYPE), 42)
    assert clr_host.await_result(task) == (True, 42)
    assert task.waited


def test_typed_task_null_result_is_a_value(clr_host):
    assert clr_host.await_result(ClrTask(typed_task_type(STRING_TYPE), None)) == (True, None)


def test_typed_task_found_through_base_types(clr_host):
    box_type = typed_task_type(INT32_TYPE, 'System.Runtime.CompilerServices.AsyncTaskMethodBuilder`1+AsyncStateMachineBox`1',
                               base_type=typed_task_type(INT32_TYPE))
    box_type.GetGenericTypeDefinition = lambda: SimpleNamespace(FullName='AsyncStateMachineBox`1')

    assert clr_host.await_result(ClrTask(box_type, 7)) == (True, 7)


def test_untyped_task_has_no_value(clr_host):
    assert clr_host.await_result(ClrTask(TASK_TYPE)) == (False, None)
    void_result = clr_type('System.Threading.Tasks.VoidTaskResult', IsValueType=True)
    assert clr_host.await_result(ClrTask(typed_task_type(void_result))) == (False, None)


def test_value_task_is_awaited_as_task(clr_host):
    task = ClrTask(typed_task_type(INT32_TYPE), 5)
    assert clr_host.await_result(ClrValueTask(task)) == (True, 5)
    assert task.waited


def test_unwrap_exception(clr_host):
    inner = ValueError('inner')
    assert clr_host.unwrap_exception(TargetInvocationException(inner)) is inner
    assert clr_host.unwrap_exception(AggregateException(inner)) is inner
    assert clr_host.unwrap_exception(inner) is None


def test_describe_exception(clr_host):
    assert clr_host.describe_exception(ManagedException()) == (
        'System.UnauthorizedAccessException', 'Access denied', '   at Sample.Program.Main()')

    exception_type, message, _ = clr_host.describe_exception(KeyError('missing'))
    assert (exception_type, message) == ('KeyError', "'missing'")
