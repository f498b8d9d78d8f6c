import pytest

from dotnetinvoker.assembly import DotNetAssembly
from dotnetinvoker.metadata import MetadataReader

from fakes import FakeHost, METHOD_BODIES, build_sample_metadata


@pytest.fixture
def sample_metadata():
    return MetadataReader(build_sample_metadata())


@pytest.fixture
def sample_assembly(sample_metadata):
    return DotNetAssembly(sample_metadata, METHOD_BODIES.get, path='Sample.dll')


@pytest.fixture
def host():
    return FakeHost()
