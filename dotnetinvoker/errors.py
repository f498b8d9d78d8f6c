"""
Part of dotnetinvoker

Exceptions raised while parsing, synthesizing and invoking.
"""

from typing import Optional


class CLRFormatError(Exception):
    def __init__(self, value):
        self.value = value

    def __str__(self):
        return repr(self.value)


class InvokerError(Exception):
    """
    Base class of the invocation pipeline failures.
    """
    code = 'INVOKER_ERROR'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(InvokerError):
    code = 'DECODE_FAIL'


class ValidationError(InvokerError):
    code = 'EXEC_BLOCKED'


class InstantiationError(InvokerError):
    code = 'INSTANTIATION_FAIL'

    def __init__(self, message: str, type_name: str = ''):
        super().__init__(message)
        self.type_name = type_name


class ConversionError(InvokerError):
    code = 'PARAM_MISMATCH'

    def __init__(self, parameter_name: str, target_type: str, raw_input: Optional[str], reason: str = ''):
        message = f'Cannot convert {raw_input!r} for parameter "{parameter_name}" to {target_type}'
        if reason:
            message = f'{message}: {reason}'
        super().__init__(message)
        self.parameter_name = parameter_name
        self.target_type = target_type
        self.raw_input = raw_input


class InvocationFault(InvokerError):
    code = 'INVOKE_FAIL'

    def __init__(self, exception_type: str, message: str, stack_trace: str = ''):
        super().__init__(message)
        self.exception_type = exception_type
        self.stack_trace = stack_trace


class Cancelled(InvokerError):
    code = 'CANCELLED'

    def __init__(self, message: str = 'Invocation cancelled before dispatch'):
        super().__init__(message)
