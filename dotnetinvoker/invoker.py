"""
Part of dotnetinvoker

Invocation boundary: the only place where target code is executed.

Every invocation goes Idle -> Validating -> Blocked, or Idle -> Validating -> Executing -> Completed/Faulted/Cancelled.
Invocations are serialized process-wide since output capture redirects process-global streams.
"""

import time
import logging
import threading
from typing import Any, List, Optional

from .logger import get_logger
from .model import Type, Struct
from .host import RuntimeHost
from .errors import Cancelled, InvocationFault, ValidationError
from .constants import MAX_UNWRAP_DEPTH, VOID_TYPE_NAME


INVOCATION_LOCK = threading.Lock()

BLOCKED_METHOD_KINDS = {
    Type.MethodKind.DYNAMIC: 'is generated at runtime and has no file-backed body',
    Type.MethodKind.NATIVE: 'has no managed body'
}


def error_from_exception(exception: Exception) -> Struct.InvocationError:
    """
    Map a pipeline exception to the error value carried by an outcome.
    """
    if isinstance(exception, InvocationFault):
        return Struct.InvocationError(Type.ErrorKind.INVOCATION_FAULT, exception.code, exception.message,
                                      exception.exception_type, exception.stack_trace)

    kinds = {
        'EXEC_BLOCKED': Type.ErrorKind.VALIDATION,
        'INSTANTIATION_FAIL': Type.ErrorKind.INSTANTIATION,
        'PARAM_MISMATCH': Type.ErrorKind.CONVERSION,
        'CANCELLED': Type.ErrorKind.CANCELLED
    }
    code = getattr(exception, 'code', InvocationFault.code)
    kind = kinds.get(code, Type.ErrorKind.INVOCATION_FAULT)

    return Struct.InvocationError(kind, code, str(exception), type(exception).__name__)


def failed_outcome(exception: Exception, state: Type.InvocationState) -> Struct.InvocationOutcome:
    return Struct.InvocationOutcome(success=False, state=state, error=error_from_exception(exception))


class InvocationBoundary(object):
    def __init__(self, host: RuntimeHost, log_level: int = logging.INFO):
        self.host = host
        self.logger = get_logger('invoker_logger', level=log_level)

    def validate(self, method: Any) -> Optional[ValidationError]:
        """
        Decide before any execution whether a method may be attempted. Returns the rejection or None.
        """
        return self._validate(method, self.host.describe(method))

    def _validate(self, method: Any, descriptor: Struct.MethodDescriptor) -> Optional[ValidationError]:
        if descriptor.is_generic_definition:
            return ValidationError(f'{descriptor.id} is an open generic method definition')
        if descriptor.contains_generic_parameters:
            return ValidationError(f'{descriptor.id} contains unresolved generic parameters')

        method_kind = self.host.method_kind(method)
        if method_kind in BLOCKED_METHOD_KINDS:
            return ValidationError(f'{descriptor.id} {BLOCKED_METHOD_KINDS[method_kind]}')

        return None

    def _original_exception(self, exception: BaseException) -> BaseException:
        current = exception
        for _ in range(MAX_UNWRAP_DEPTH):
            inner = self.host.unwrap_exception(current)
            if inner is None:
                break
            current = inner

        return current

    def invoke(self, method: Any, instance: Any = None, arguments: Optional[List[Any]] = None,
               cancel_event: Optional[threading.Event] = None) -> Struct.InvocationOutcome:
        """
        Execute a method with a prepared receiver and argument list and return its outcome. Never raises for
        failures of the target code; cancellation is only honoured before dispatch.

        The state of an invocation lives in its outcome only, so concurrent callers never observe each other.
        """
        arguments = list(arguments or [])

        descriptor = self.host.describe(method)
        self.logger.debug(f'{descriptor.id}: {Type.InvocationState.VALIDATING.value}')
        rejection = self._validate(method, descriptor)
        if rejection is not None:
            self.logger.info(f'Blocked: {rejection.message}')
            return failed_outcome(rejection, Type.InvocationState.BLOCKED)

        with INVOCATION_LOCK:
            if cancel_event is not None and cancel_event.is_set():
                return failed_outcome(Cancelled(), Type.InvocationState.CANCELLED)

            self.logger.debug(f'{descriptor.id}: {Type.InvocationState.EXECUTING.value}')
            fault = None
            has_value, return_value = False, None
            start = time.perf_counter()

            with self.host.capture_output() as capture:
                try:
                    result = self.host.invoke(method, instance, arguments)
                    if self.host.is_awaitable(result):
                        has_value, return_value = self.host.await_result(result)
                    else:
                        # A null reference from a non-void method is still a value
                        has_value, return_value = descriptor.return_type != VOID_TYPE_NAME, result
                except Exception as e:
                    original = self._original_exception(e)
                    exception_type, message, stack_trace = self.host.describe_exception(original)
                    fault = InvocationFault(exception_type, message, stack_trace)

            duration = time.perf_counter() - start

        # Streams are restored at this point, capture buffers are complete
        if fault is not None:
            self.logger.info(f'Faulted: {fault.exception_type}: {fault.message}')
            return Struct.InvocationOutcome(
                success=False,
                state=Type.InvocationState.FAULTED,
                error=error_from_exception(fault),
                stdout=capture.stdout,
                stderr=capture.stderr,
                duration=duration
            )

        return Struct.InvocationOutcome(
            success=True,
            state=Type.InvocationState.COMPLETED,
            return_value=return_value,
            has_value=has_value,
            stdout=capture.stdout,
            stderr=capture.stderr,
            duration=duration
        )
