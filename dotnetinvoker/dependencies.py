"""
Part of dotnetinvoker

Dependency presence check: referenced assemblies and native modules looked up next to the analysed file.
Informational only, the invocation path does not consume it.
"""

import os
import logging
from typing import Iterable, List, Optional

from .logger import get_logger
from .model import Type, Struct
from .constants import RUNTIME_PROVIDED_ASSEMBLIES, RUNTIME_PROVIDED_ASSEMBLY_PREFIXES


MANAGED_EXTENSIONS = ('.dll', '.exe')
NATIVE_EXTENSIONS = ('.dll',)


def is_runtime_provided(assembly_name: str) -> bool:
    return assembly_name in RUNTIME_PROVIDED_ASSEMBLIES or assembly_name.startswith(RUNTIME_PROVIDED_ASSEMBLY_PREFIXES)


def candidate_file_names(name: str, extensions: Iterable[str]) -> List[str]:
    if os.path.splitext(name)[1].lower() in extensions:
        return [name]

    return [name + extension for extension in extensions]


class DependencyChecker(object):
    def __init__(self, search_path: Optional[List[str]] = None, log_level: int = logging.INFO):
        """
        :param search_path: extra directories searched for native modules; defaults to PATH
        """
        if search_path is None:
            search_path = [p for p in os.environ.get('PATH', '').split(os.pathsep) if p]
        self.search_path = search_path
        self.logger = get_logger('dependencies_logger', level=log_level)

    @staticmethod
    def _find(directories: Iterable[str], file_names: List[str]) -> Optional[str]:
        for directory in directories:
            for file_name in file_names:
                candidate = os.path.join(directory, file_name)
                if os.path.isfile(candidate):
                    return candidate

        return None

    def check_managed(self, base_directory: str, name: str) -> Struct.DependencyRecord:
        path = self._find([base_directory], candidate_file_names(name, MANAGED_EXTENSIONS))
        if path is not None:
            return Struct.DependencyRecord(name, Type.DependencyKind.MANAGED, Type.DependencyStatus.RESOLVED, path)

        if is_runtime_provided(name):
            return Struct.DependencyRecord(name, Type.DependencyKind.MANAGED, Type.DependencyStatus.RESOLVED,
                                           note='provided by the runtime')

        return Struct.DependencyRecord(name, Type.DependencyKind.MANAGED, Type.DependencyStatus.UNRESOLVED,
                                       note='not found next to the assembly')

    def check_native(self, base_directory: str, name: str) -> Struct.DependencyRecord:
        path = self._find([base_directory] + self.search_path, candidate_file_names(name, NATIVE_EXTENSIONS))
        if path is not None:
            return Struct.DependencyRecord(name, Type.DependencyKind.NATIVE, Type.DependencyStatus.RESOLVED, path)

        return Struct.DependencyRecord(name, Type.DependencyKind.NATIVE, Type.DependencyStatus.UNRESOLVED,
                                       note='not found next to the assembly or on the search path')

    def check(self, assembly_path: str, references: Iterable[str],
              native_modules: Iterable[str]) -> List[Struct.DependencyRecord]:
        base_directory = os.path.dirname(os.path.abspath(assembly_path))
        result = []

        for name in dict.fromkeys(references):
            result.append(self.check_managed(base_directory, name))
        for name in dict.fromkeys(native_modules):
            result.append(self.check_native(base_directory, name))

        for record in result:
            self.logger.debug(f'{record.kind.value} dependency {record.name}: {record.status.value} {record.path}')

        return result

    def check_assembly(self, assembly) -> List[Struct.DependencyRecord]:
        """
        Check the references of a DotNetAssembly loaded from a file.
        """
        return self.check(assembly.path, assembly.get_references(), assembly.get_unmanaged_modules())
