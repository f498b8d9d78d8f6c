"""
Part of dotnetinvoker

Runs the whole invocation pipeline: argument synthesis, receiver synthesis and the invocation boundary.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, List, Optional, Sequence

from .logger import get_logger
from .model import Type, Struct
from .host import RuntimeHost
from .errors import Cancelled, ConversionError, InstantiationError
from .parameters import ParameterSynthesizer
from .instances import InstanceSynthesizer
from .invoker import InvocationBoundary, failed_outcome


class InvocationCoordinator(object):
    def __init__(self, host: RuntimeHost, log_level: int = logging.INFO):
        self.host = host
        self.logger = get_logger('coordinator_logger', level=log_level)
        self.parameters = ParameterSynthesizer(host, log_level=log_level)
        self.instances = InstanceSynthesizer(host, self.parameters, log_level=log_level)
        self.boundary = InvocationBoundary(host, log_level=log_level)
        self._executor: Optional[ThreadPoolExecutor] = None

    def prepare_arguments(self, method: Any, raw_inputs: Optional[Sequence[Optional[str]]] = None) -> List[Any]:
        """
        Resolve every parameter. Inputs are positional; a missing or None input is synthesized for that
        parameter alone. Raises ConversionError for bad input or more inputs than parameters.
        """
        specs = self.host.parameters(method)
        raw_inputs = list(raw_inputs or [])

        if len(raw_inputs) > len(specs):
            raise ConversionError('<arguments>', f'{len(specs)} parameters', ' '.join(map(str, raw_inputs)),
                                  f'{len(raw_inputs)} inputs given')

        arguments = []
        for spec in specs:
            raw_input = raw_inputs[spec.position] if spec.position < len(raw_inputs) else None
            arguments.append(self.parameters.resolve(spec, raw_input))

        return arguments

    def invoke_method(self, method: Any, raw_inputs: Optional[Sequence[Optional[str]]] = None,
                      instance: Any = None, cancel_event: Optional[threading.Event] = None) \
            -> Struct.InvocationOutcome:
        if cancel_event is not None and cancel_event.is_set():
            return failed_outcome(Cancelled(), Type.InvocationState.CANCELLED)

        # Nothing is synthesized for methods that would be blocked anyway
        rejection = self.boundary.validate(method)
        if rejection is not None:
            self.logger.info(f'Blocked: {rejection.message}')
            return failed_outcome(rejection, Type.InvocationState.BLOCKED)

        try:
            arguments = self.prepare_arguments(method, raw_inputs)
            if instance is None and not self.host.describe(method).is_static:
                instance = self.instances.construct(self.host.declaring_type(method))
        except (ConversionError, InstantiationError) as e:
            self.logger.info(f'Cannot prepare invocation: {e.message}')
            return failed_outcome(e, Type.InvocationState.FAULTED)

        return self.boundary.invoke(method, instance, arguments, cancel_event)

    def invoke_all(self, methods: Sequence[Any], cancel_event: Optional[threading.Event] = None) \
            -> List[Struct.InvocationOutcome]:
        """
        Invoke methods one after another with synthesized arguments. Stops before the next method once cancelled.
        """
        outcomes = []

        for method in methods:
            if cancel_event is not None and cancel_event.is_set():
                self.logger.info(f'Batch cancelled after {len(outcomes)} of {len(methods)} methods')
                break
            outcome = self.invoke_method(method, cancel_event=cancel_event)
            self.logger.debug(f'{method}: {outcome.state.value}')
            outcomes.append(outcome)

        return outcomes

    def submit(self, method: Any, raw_inputs: Optional[Sequence[Optional[str]]] = None,
               cancel_event: Optional[threading.Event] = None) -> 'Future[Struct.InvocationOutcome]':
        """
        Run invoke_method on the background worker so the caller is not blocked.
        """
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='dotnetinvoker')

        return self._executor.submit(self.invoke_method, method, raw_inputs, None, cancel_event)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
