"""
Part of dotnetinvoker

Instance synthesis for receivers of instance methods and for object constructor arguments.
"""

import logging
from typing import Any, Dict, List, Optional

from .logger import get_logger
from .errors import InstantiationError
from .model import Type, Struct
from .host import RuntimeHost
from .parameters import ParameterSynthesizer
from .constants import MAX_CONSTRUCTION_DEPTH


DEFAULT_VALUE_KINDS = {Type.TypeKind.STRING, Type.TypeKind.VALUE, Type.TypeKind.ENUM, Type.TypeKind.ARRAY}


class InstanceSynthesizer(object):
    def __init__(self, host: RuntimeHost, parameters: ParameterSynthesizer = None,
                 max_depth: int = MAX_CONSTRUCTION_DEPTH, log_level: int = logging.INFO):
        self.host = host
        self.parameters = parameters if parameters is not None else ParameterSynthesizer(host, log_level=log_level)
        self.max_depth = max_depth
        self.logger = get_logger('instances_logger', level=log_level)

    def construct(self, type_handle: Any, depth: int = 0, failed: Optional[Dict[str, int]] = None) -> Any:
        """
        Build an instance of a type through its simplest usable constructor.

        Constructor arguments of string, value, enum and array types get their auto default; object arguments
        are constructed recursively one level deeper. Raises InstantiationError for abstract types, interfaces,
        when no constructor succeeds or when the nesting exceeds max_depth.

        :param failed: type names that could not be built during this call, mapped to the shallowest depth they
                       failed at; a type is not retried at that depth or deeper
        """
        if failed is None:
            failed = {}

        type_name = self.host.type_name(type_handle)

        if type_name in failed and depth >= failed[type_name]:
            raise InstantiationError(f'{type_name} already failed to construct at nesting level {failed[type_name]}',
                                     type_name)

        try:
            return self._construct(type_handle, type_name, depth, failed)
        except InstantiationError:
            failed[type_name] = min(depth, failed.get(type_name, depth))
            raise

    def _construct(self, type_handle: Any, type_name: str, depth: int, failed: Dict[str, int]) -> Any:
        if depth > self.max_depth:
            raise InstantiationError(f'Construction of {type_name} exceeds the depth bound {self.max_depth}',
                                     type_name)

        type_kind = self.host.type_kind(type_handle)

        if type_kind == Type.TypeKind.STRING:
            return ''
        if type_kind in (Type.TypeKind.VALUE, Type.TypeKind.ENUM, Type.TypeKind.ARRAY):
            return self.parameters.generate_default(type_handle)
        if type_kind in (Type.TypeKind.ABSTRACT, Type.TypeKind.INTERFACE):
            raise InstantiationError(f'Cannot instantiate {type_kind.value.lower()} type {type_name}', type_name)

        constructors = self.host.constructors(type_handle)
        parameter_lists = [(constructor, self.host.parameters(constructor)) for constructor in constructors]

        for constructor, parameter_specs in parameter_lists:
            if not parameter_specs:
                try:
                    return self.host.construct(constructor, [])
                except Exception as e:
                    raise InstantiationError(f'Parameterless constructor of {type_name} failed: {e}',
                                             type_name) from e

        last_error = None
        for constructor, parameter_specs in sorted(parameter_lists, key=lambda item: len(item[1])):
            try:
                plan = self._plan(type_name, constructor, parameter_specs, depth, failed)
                instance = self.host.construct(plan.constructor, list(plan.arguments))
            except Exception as e:
                self.logger.debug(f'Constructor candidate of {type_name} with {len(parameter_specs)} '
                                  f'parameters failed - {e}')
                last_error = e
                continue

            return instance

        if last_error is None:
            raise InstantiationError(f'{type_name} has no public constructor', type_name)

        raise InstantiationError(f'No constructor of {type_name} succeeded: {last_error}', type_name) from last_error

    def _plan(self, type_name: str, constructor: Any, parameter_specs: List[Struct.ParameterSpec],
              depth: int, failed: Dict[str, int]) -> Struct.InstanceConstructionPlan:
        arguments = []
        for spec in parameter_specs:
            if self.host.type_kind(spec.type) in DEFAULT_VALUE_KINDS:
                arguments.append(self.parameters.generate_default(spec.type))
            else:
                arguments.append(self.construct(spec.type, depth + 1, failed))

        return Struct.InstanceConstructionPlan(type_name, constructor, tuple(arguments), depth)
