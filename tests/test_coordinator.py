import threading

import pytest

from dotnetinvoker.coordinator import InvocationCoordinator
from dotnetinvoker.errors import ConversionError
from dotnetinvoker.model import Type

from fakes import FakeConstructor, FakeMethod, FakeType, spec, BOOLEAN, DISPOSABLE, INT32, OBJECT, STRING


def add(a, b):
    return a + b


ADD = FakeMethod('Add', OBJECT, add, parameters=[spec('a', INT32), spec('b', INT32, 1)])


@pytest.fixture
def coordinator(host):
    with InvocationCoordinator(host) as coordinator:
        yield coordinator


def test_prepare_arguments(coordinator):
    assert coordinator.prepare_arguments(ADD, ['2', '3']) == [2, 3]


def test_prepare_arguments_fills_missing_inputs(coordinator):
    assert coordinator.prepare_arguments(ADD) == [0, 0]
    assert coordinator.prepare_arguments(ADD, ['5']) == [5, 0]
    assert coordinator.prepare_arguments(ADD, [None, '7']) == [0, 7]


def test_prepare_arguments_uses_declared_defaults(coordinator):
    method = FakeMethod('Greet', OBJECT, lambda name, loud: name,
                        parameters=[spec('name', STRING), spec('loud', BOOLEAN, 1, is_optional=True,
                                                               has_default=True, default_value=True)])
    assert coordinator.prepare_arguments(method, ['x']) == ['x', True]


def test_prepare_arguments_rejects_extra_inputs(coordinator):
    with pytest.raises(ConversionError):
        coordinator.prepare_arguments(ADD, ['1', '2', '3'])


def test_invoke_method(coordinator):
    outcome = coordinator.invoke_method(ADD, ['2', '40'])
    assert outcome.success
    assert outcome.return_value == 42


def test_invoke_method_with_synthesized_arguments(coordinator, host):
    outcome = coordinator.invoke_method(ADD)
    assert outcome.return_value == 0
    assert host.invocations == [('Add', None, [0, 0])]


def test_conversion_failure_is_reported(coordinator, host):
    outcome = coordinator.invoke_method(ADD, ['two'])
    assert not outcome.success
    assert outcome.state == Type.InvocationState.FAULTED
    assert outcome.error.kind == Type.ErrorKind.CONVERSION
    assert outcome.error.code == 'PARAM_MISMATCH'
    assert host.invocations == []


def test_instance_method_gets_synthesized_receiver(coordinator, host):
    counter = FakeType('Sample.Counter', Type.TypeKind.CLASS,
                       constructors=[FakeConstructor([spec('start', INT32)], lambda start: {'value': start})])
    method = FakeMethod('Next', counter, lambda self: self['value'] + 1, is_static=False)

    outcome = coordinator.invoke_method(method)
    assert outcome.return_value == 1
    assert host.invocations == [('Next', {'value': 0}, [])]


def test_given_receiver_is_used(coordinator):
    method = FakeMethod('Length', STRING, lambda self: len(self), is_static=False)
    assert coordinator.invoke_method(method, instance='abcd').return_value == 4


def test_instantiation_failure_is_reported(coordinator, host):
    method = FakeMethod('Dispose', DISPOSABLE, lambda self: None, is_static=False)

    outcome = coordinator.invoke_method(method)
    assert outcome.state == Type.InvocationState.FAULTED
    assert outcome.error.kind == Type.ErrorKind.INSTANTIATION
    assert outcome.error.code == 'INSTANTIATION_FAIL'
    assert host.invocations == []


def test_blocked_method_is_not_prepared(coordinator, host):
    method = FakeMethod('Dispose', DISPOSABLE, lambda self: None, is_static=False, kind=Type.MethodKind.DYNAMIC)

    outcome = coordinator.invoke_method(method, ['unused'])
    assert outcome.state == Type.InvocationState.BLOCKED
    assert outcome.error.kind == Type.ErrorKind.VALIDATION


def test_cancelled_before_start(coordinator, host):
    cancel_event = threading.Event()
    cancel_event.set()

    outcome = coordinator.invoke_method(ADD, cancel_event=cancel_event)
    assert outcome.state == Type.InvocationState.CANCELLED
    assert host.invocations == []


def test_invoke_all(coordinator):
    failing = FakeMethod('Fail', OBJECT, lambda: 1 / 0)
    outcomes = coordinator.invoke_all([ADD, failing, ADD])
    assert [outcome.state for outcome in outcomes] == [
        Type.InvocationState.COMPLETED,
        Type.InvocationState.FAULTED,
        Type.InvocationState.COMPLETED
    ]
    assert outcomes[1].error.exception_type == 'ZeroDivisionError'


def test_invoke_all_stops_when_cancelled(coordinator):
    cancel_event = threading.Event()
    stopper = FakeMethod('Stop', OBJECT, cancel_event.set)

    outcomes = coordinator.invoke_all([ADD, stopper, ADD, ADD], cancel_event)
    assert len(outcomes) == 2


def test_submit(coordinator):
    future = coordinator.submit(ADD, ['20', '22'])
    assert future.result(timeout=10).return_value == 42


def test_submit_runs_off_the_calling_thread(coordinator):
    method = FakeMethod('Thread', OBJECT, lambda: threading.current_thread().name)
    outcome = coordinator.submit(method).result(timeout=10)
    assert outcome.return_value.startswith('dotnetinvoker')
