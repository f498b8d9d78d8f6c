__version__ = '0.1.0'

from .errors import (CLRFormatError, InvokerError, DecodeError, ValidationError, InstantiationError,  # noqa: F401
                     ConversionError, InvocationFault, Cancelled)
from .model import Type, Struct  # noqa: F401
from .decoder import decode, read_method_body  # noqa: F401
from .assembly import DotNetAssembly, format_signature  # noqa: F401
from .callgraph import CallGraph, CallGraphBuilder  # noqa: F401
from .host import RuntimeHost  # noqa: F401
from .parameters import ParameterSynthesizer  # noqa: F401
from .instances import InstanceSynthesizer  # noqa: F401
from .invoker import InvocationBoundary, INVOCATION_LOCK  # noqa: F401
from .coordinator import InvocationCoordinator  # noqa: F401
from .dependencies import DependencyChecker  # noqa: F401
