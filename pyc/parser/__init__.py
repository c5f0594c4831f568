"""Container, marshal and code object parsing"""

from .cursor import *
from .types import *
from .header import *
from .marshal import *
from .loader import *

__all__ = [
    'ByteCursor',
    'OperandKind',
    'CodeFlags',
    'Constant',
    'CodeObject',
    'Instruction',
    'LineTableFormat',
    'HEADER_SIZE',
    'HeaderFlags',
    'HeaderInfo',
    'validate_header',
    'detect_version',
    'MarshalType',
    'FLAG_REF',
    'CodeFields',
    'MarshalDecoder',
    'CodeObjectBuilder',
    'Compiler',
    'compile_source',
    'host_version',
    'host_opcode_table',
    'load',
    'load_with_header',
    'load_file',
    'load_code',
    'load_source',
    'load_source_file',
    'load_from_file',
]
