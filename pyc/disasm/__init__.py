"""Versioned CPython bytecode disassembler"""

from .opcode_table import *
from .line_table import *
from .disassembler import *
from .formatter import *

__all__ = [
    'InstructionDescriptor',
    'OpcodeTable',
    'get_opcode_table',
    'registered_versions',
    'magic_for_version',
    'TABLE_DIR',
    'decode_line_table',
    'Disassembler',
    'DisassemblerContext',
    'Formatter',
    'FormatterContext',
]
