"""
Invoke one method of a .NET assembly under observation and print the outcome.

Example:
    python dotnetinvoker_invoke.py sample.dll 0x06000002 -- 42 hello
"""

import json
import argparse

from dotnetinvoker import InvocationCoordinator, DependencyChecker, DotNetAssembly
from dotnetinvoker.clrhost import ClrHost


def main():
    parser = argparse.ArgumentParser(prog='dotnetinvoker_invoke.py',
                                     description='Invoke a single method of a .NET assembly.')
    parser.add_argument('file', type=str, help='Absolute file path of .NET assembly.')
    parser.add_argument('token', type=lambda value: int(value, 0), help='MethodDef token, e.g. 0x06000002.')
    parser.add_argument('inputs', nargs='*', help='Textual parameter values; missing ones are generated.')
    parser.add_argument('--runtime', type=str, default=None, help='pythonnet runtime: coreclr, netfx or mono.')
    parser.add_argument('--check-dependencies', action='store_true',
                        help='Report referenced assemblies and native modules before invoking.')
    args = parser.parse_args()

    if args.check_dependencies:
        for record in DependencyChecker().check_assembly(DotNetAssembly.from_file(args.file)):
            print(f'{record.kind.value}\t{record.status.value}\t{record.name}\t{record.path or record.note}')

    host = ClrHost(runtime=args.runtime)
    method = host.find_method(host.load_assembly(args.file), args.token)

    with InvocationCoordinator(host) as coordinator:
        outcome = coordinator.invoke_method(method, args.inputs)

    print(json.dumps(outcome.as_dict(), indent=4))


if __name__ == '__main__':
    main()
