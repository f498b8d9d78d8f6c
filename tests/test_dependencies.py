import pytest

from dotnetinvoker.assembly import DotNetAssembly
from dotnetinvoker.dependencies import DependencyChecker, candidate_file_names, is_runtime_provided
from dotnetinvoker.model import Type


@pytest.fixture
def assembly_path(tmp_path):
    path = tmp_path / 'Sample.exe'
    path.write_bytes(b'MZ')
    return str(path)


def test_is_runtime_provided():
    assert is_runtime_provided('mscorlib')
    assert is_runtime_provided('System.Net.Http')
    assert is_runtime_provided('Microsoft.CSharp')
    assert not is_runtime_provided('Newtonsoft.Json')


def test_candidate_file_names():
    assert candidate_file_names('Helper', ('.dll', '.exe')) == ['Helper.dll', 'Helper.exe']
    assert candidate_file_names('user32.dll', ('.dll',)) == ['user32.dll']
    assert candidate_file_names('USER32.DLL', ('.dll',)) == ['USER32.DLL']


def test_managed_dependency_next_to_assembly(tmp_path, assembly_path):
    (tmp_path / 'Helper.dll').write_bytes(b'MZ')

    records = DependencyChecker(search_path=[]).check(assembly_path, ['Helper'], [])
    assert len(records) == 1
    assert records[0].kind == Type.DependencyKind.MANAGED
    assert records[0].status == Type.DependencyStatus.RESOLVED
    assert records[0].path == str(tmp_path / 'Helper.dll')


def test_managed_dependency_provided_by_runtime(assembly_path):
    record = DependencyChecker(search_path=[]).check(assembly_path, ['mscorlib'], [])[0]
    assert record.status == Type.DependencyStatus.RESOLVED
    assert record.path == ''
    assert record.note == 'provided by the runtime'


def test_missing_managed_dependency(assembly_path):
    record = DependencyChecker(search_path=[]).check(assembly_path, ['Newtonsoft.Json'], [])[0]
    assert record.status == Type.DependencyStatus.UNRESOLVED


def test_native_dependency_on_search_path(tmp_path, assembly_path):
    system_directory = tmp_path / 'system32'
    system_directory.mkdir()
    (system_directory / 'user32.dll').write_bytes(b'MZ')

    checker = DependencyChecker(search_path=[str(system_directory)])
    records = checker.check(assembly_path, [], ['user32.dll', 'kernel32'])
    assert [(r.name, r.kind, r.status) for r in records] == [
        ('user32.dll', Type.DependencyKind.NATIVE, Type.DependencyStatus.RESOLVED),
        ('kernel32', Type.DependencyKind.NATIVE, Type.DependencyStatus.UNRESOLVED)
    ]


def test_duplicates_are_reported_once(assembly_path):
    records = DependencyChecker(search_path=[]).check(assembly_path, ['mscorlib', 'mscorlib'], ['a.dll', 'a.dll'])
    assert [record.name for record in records] == ['mscorlib', 'a.dll']


def test_check_assembly(tmp_path, sample_metadata):
    assembly = DotNetAssembly(sample_metadata, lambda rva: None, path=str(tmp_path / 'Sample.dll'))
    records = DependencyChecker(search_path=[]).check_assembly(assembly)
    assert [(r.name, r.status) for r in records] == [
        ('mscorlib', Type.DependencyStatus.RESOLVED),
        ('user32.dll', Type.DependencyStatus.UNRESOLVED)
    ]
