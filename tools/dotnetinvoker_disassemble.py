"""
Disassemble the IL code of every method of a .NET assembly and optionally dump its call graph.
"""

import json
import argparse

from dotnetinvoker import DotNetAssembly, CallGraphBuilder, format_signature


class Disassembler:
    def __init__(self, file_path: str):
        self.assembly = DotNetAssembly.from_file(file_path)

    def disassemble_file(self) -> None:
        current_type = None

        for method in self.assembly.methods():
            if method.declaring_type != current_type:
                current_type = method.declaring_type
                print(f'Type: {current_type}')

            print(f'\tMethod: {format_signature(method)}')
            decoded = self.assembly.decode_method(method)
            if decoded is None:
                print('\t\tNo method body')
                continue

            print('\t\tDisassembled code:')
            for instruction in decoded:
                print(f'\t\t\t{instruction}')
            if decoded.truncated:
                print('\t\t\t(truncated)')

    def dump_call_graph(self, root: str = '', depth: int = 3) -> None:
        builder = CallGraphBuilder(self.assembly)

        if root:
            matches = [m for m in self.assembly.methods() if root in (m.id, m.display_name)]
            if not matches:
                print(f'No method named "{root}"')
                return
            graph = builder.build_subgraph(matches[0], depth)
        else:
            graph = builder.build_assembly_graph()

        print(json.dumps(graph.as_dict(), indent=4))


def main():
    parser = argparse.ArgumentParser(prog='dotnetinvoker_disassemble.py',
                                     description='Disassemble .NET assembly IL code.')
    parser.add_argument('file', type=str, help='Absolute file path of .NET assembly.')
    parser.add_argument('--graph', action='store_true', help='Print the call graph instead of the IL code.')
    parser.add_argument('--root', type=str, default='', help='Root method (id or Type.Method) of a call subgraph.')
    parser.add_argument('--depth', type=int, default=3, help='Depth bound of the call subgraph.')
    args = parser.parse_args()

    disasm = Disassembler(args.file)
    if args.graph:
        disasm.dump_call_graph(args.root, args.depth)
    else:
        disasm.disassemble_file()


if __name__ == '__main__':
    main()
