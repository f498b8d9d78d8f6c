"""
Part of dotnetinvoker

Runtime host abstraction. The synthesizers and the invocation boundary talk to a managed runtime only
through RuntimeHost, so they can run against .NET (see clrhost.ClrHost) or any other reflective runtime.
"""

import io
import sys
import asyncio
import inspect
import traceback
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Tuple

from .model import Type, Struct


class OutputCapture(object):
    """
    Per-invocation stdout/stderr buffers.
    """
    def __init__(self):
        self.stdout_buffer = io.StringIO()
        self.stderr_buffer = io.StringIO()
        self._extra_stdout: List[str] = []
        self._extra_stderr: List[str] = []

    def append(self, stdout: str = '', stderr: str = '') -> None:
        """
        Add output collected from a source other than the Python streams, e.g. the managed console.
        """
        if stdout:
            self._extra_stdout.append(stdout)
        if stderr:
            self._extra_stderr.append(stderr)

    @property
    def stdout(self) -> str:
        return self.stdout_buffer.getvalue() + ''.join(self._extra_stdout)

    @property
    def stderr(self) -> str:
        return self.stderr_buffer.getvalue() + ''.join(self._extra_stderr)


class RuntimeHost(object):
    """
    Reflection seam over a managed runtime. Types, constructors and methods are opaque handles of the host.
    """

    # Types

    def type_name(self, type_handle: Any) -> str:
        raise NotImplementedError

    def type_kind(self, type_handle: Any) -> Type.TypeKind:
        raise NotImplementedError

    def enum_members(self, type_handle: Any) -> List[Tuple[str, Any]]:
        """
        (name, value) pairs of an enum type in declaration order.
        """
        raise NotImplementedError

    def element_type(self, type_handle: Any) -> Any:
        raise NotImplementedError

    def new_array(self, element_type: Any, length: int = 0) -> Any:
        raise NotImplementedError

    def create_default(self, type_handle: Any) -> Any:
        """
        Argument-less construction of a value type. Raises when the runtime cannot create one.
        """
        raise NotImplementedError

    def convert(self, raw_input: str, type_handle: Any) -> Any:
        """
        Generic conversion of textual input for types without a dedicated converter.
        """
        raise NotImplementedError

    # Constructors and methods

    def constructors(self, type_handle: Any) -> List[Any]:
        """
        Public instance constructors of a type.
        """
        raise NotImplementedError

    def parameters(self, method: Any) -> List[Struct.ParameterSpec]:
        raise NotImplementedError

    def construct(self, constructor: Any, arguments: List[Any]) -> Any:
        raise NotImplementedError

    def declaring_type(self, method: Any) -> Any:
        raise NotImplementedError

    def describe(self, method: Any) -> Struct.MethodDescriptor:
        raise NotImplementedError

    def method_kind(self, method: Any) -> Type.MethodKind:
        raise NotImplementedError

    def invoke(self, method: Any, instance: Any, arguments: List[Any]) -> Any:
        """
        Dispatch a call. Exceptions thrown by the target may arrive wrapped, see unwrap_exception.
        """
        raise NotImplementedError

    # Results and failures

    def is_awaitable(self, value: Any) -> bool:
        return inspect.isawaitable(value)

    def await_result(self, value: Any) -> Tuple[bool, Any]:
        """
        Wait for an awaitable and return (has_value, value). Python awaitables carry no result type, so whatever
        they resolve to, None included, counts as a value.
        """
        if isinstance(value, asyncio.Future) and value.done():
            result = value.result()
        elif inspect.iscoroutine(value):
            result = asyncio.run(value)
        else:
            async def _wait():
                return await value
            result = asyncio.run(_wait())

        return True, result

    def unwrap_exception(self, exception: BaseException) -> Optional[BaseException]:
        """
        The exception wrapped by a reflection wrapper exception, or None if it is not a wrapper.
        """
        return None

    def describe_exception(self, exception: BaseException) -> Tuple[str, str, str]:
        """
        (type name, message, stack trace) of an exception thrown by target code.
        """
        stack_trace = ''.join(traceback.format_exception(type(exception), exception, exception.__traceback__))
        return type(exception).__name__, str(exception), stack_trace

    @contextmanager
    def capture_output(self) -> Iterator[OutputCapture]:
        """
        Redirect the process-wide output streams into a fresh OutputCapture. The original streams are
        restored on every exit path.
        """
        capture = OutputCapture()
        original_stdout, original_stderr = sys.stdout, sys.stderr
        sys.stdout, sys.stderr = capture.stdout_buffer, capture.stderr_buffer
        try:
            yield capture
        finally:
            sys.stdout, sys.stderr = original_stdout, original_stderr
