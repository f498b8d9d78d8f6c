from setuptools import setup, find_packages

from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name='dotnetinvoker',
    version='0.1.0',
    description='Inspect .NET assemblies method by method and invoke single methods under observation',
    long_description=long_description,
    long_description_content_type='text/markdown',
    packages=find_packages(include=['dotnetinvoker', 'dotnetinvoker.*']),
    package_dir={'dotnetinvoker': 'dotnetinvoker'},
    install_requires=[
        'dncil',
        'pefile',
        'pythonnet'
    ],
    extras_require={
        'test': [
            'pytest'
        ]
    },
    python_requires='>=3.7'
)
