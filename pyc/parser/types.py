"""
Code object IR: constants, code objects and decoded instructions
"""

from common import *
from dataclasses import dataclass, field
from typing import Any, Iterator

__all__ = (
    'OperandKind',
    'CodeFlags',
    'Constant',
    'CodeObject',
    'Instruction',
    'LineTableFormat',
)


class OperandKind(IntEnum2):
    """How an instruction's argument is interpreted"""
    Empty           = 0     # no operand
    Local           = 1     # index into varnames
    Name            = 2     # index into names
    FreeOrCell      = 3     # index into cellvars + freevars
    Constant        = 4     # index into the constant pool
    RelativeJump    = 5     # delta from the next instruction
    AbsoluteJump    = 6     # offset from the start of the stream
    Comparator      = 7     # index into the comparison operator table
    RawInt          = 8     # immediate count / flags

    @property
    def is_jump(self) -> bool:
        return self in (OperandKind.RelativeJump, OperandKind.AbsoluteJump)


class LineTableFormat(IntEnum2):
    """Encoding of the line number table"""
    Lnotab          = 0     # co_lnotab, 3.7 - 3.9
    Linetable       = 1     # co_linetable, 3.10


class CodeFlags(IntFlag2):
    """co_flags bits, for display only; CodeObject.flags keeps the raw value"""
    OPTIMIZED               = 0x0001
    NEWLOCALS               = 0x0002
    VARARGS                 = 0x0004
    VARKEYWORDS             = 0x0008
    NESTED                  = 0x0010
    GENERATOR               = 0x0020
    NOFREE                  = 0x0040
    COROUTINE               = 0x0080
    ITERABLE_COROUTINE      = 0x0100
    ASYNC_GENERATOR         = 0x0200


@dataclass(frozen = True)
class Constant:
    """
    One value of a constant pool.

    A closed union: `kind` says which Python type `value` holds. Tuples and
    frozensets hold a tuple of Constant, code holds a CodeObject.
    """

    class Kind(IntEnum2):
        NONE        = 0
        BOOL        = 1
        INT         = 2
        FLOAT       = 3
        COMPLEX     = 4
        STR         = 5
        BYTES       = 6
        TUPLE       = 7
        FROZENSET   = 8
        ELLIPSIS    = 9
        CODE        = 10

    kind    : Kind
    value   : Any = None

    @classmethod
    def none(cls) -> 'Constant':
        return cls(Constant.Kind.NONE)

    @classmethod
    def ellipsis(cls) -> 'Constant':
        return cls(Constant.Kind.ELLIPSIS, Ellipsis)

    @classmethod
    def from_bool(cls, value: bool) -> 'Constant':
        return cls(Constant.Kind.BOOL, bool(value))

    @classmethod
    def from_int(cls, value: int) -> 'Constant':
        return cls(Constant.Kind.INT, int(value))

    @classmethod
    def from_float(cls, value: float) -> 'Constant':
        return cls(Constant.Kind.FLOAT, float(value))

    @classmethod
    def from_complex(cls, value: complex) -> 'Constant':
        return cls(Constant.Kind.COMPLEX, complex(value))

    @classmethod
    def from_str(cls, value: str) -> 'Constant':
        return cls(Constant.Kind.STR, value)

    @classmethod
    def from_bytes(cls, value: bytes) -> 'Constant':
        return cls(Constant.Kind.BYTES, bytes(value))

    @classmethod
    def from_tuple(cls, items) -> 'Constant':
        return cls(Constant.Kind.TUPLE, tuple(items))

    @classmethod
    def from_frozenset(cls, items) -> 'Constant':
        return cls(Constant.Kind.FROZENSET, tuple(items))

    @classmethod
    def from_code(cls, code: 'CodeObject') -> 'Constant':
        return cls(Constant.Kind.CODE, code)

    @property
    def is_none(self) -> bool:
        return self.kind == Constant.Kind.NONE

    def as_code(self) -> 'CodeObject | None':
        return self.value if self.kind == Constant.Kind.CODE else None

    def as_name(self) -> str | None:
        return self.value if self.kind == Constant.Kind.STR else None

    def __str__(self) -> str:
        match self.kind:
            case Constant.Kind.NONE:
                return 'None'

            case Constant.Kind.ELLIPSIS:
                return '...'

            case Constant.Kind.TUPLE:
                items = ', '.join(str(c) for c in self.value)
                return f'({items},)' if len(self.value) == 1 else f'({items})'

            case Constant.Kind.FROZENSET:
                items = ', '.join(str(c) for c in self.value)
                return f'frozenset({{{items}}})' if self.value else 'frozenset()'

            case Constant.Kind.CODE:
                return f'<code {self.value.name}>'

            case _:
                return repr(self.value)


@dataclass(frozen = True)
class Instruction:
    """One decoded bytecode operation"""
    mnemonic            : str
    opcode              : int
    raw_arg             : int                                       # EXTENDED_ARG-merged argument, 0 if none
    resolved_operand    : Constant                                  # argument resolved by operand kind
    byte_offset         : int                                       # offset of the first byte (first prefix included)
    source_line         : int | None    = None                      # set where a new source line starts
    is_jump_target      : bool          = False
    operand_kind        : OperandKind   = OperandKind.Empty
    size                : int           = 2                         # bytes, EXTENDED_ARG prefixes included

    @property
    def is_jump(self) -> bool:
        return self.operand_kind.is_jump

    @property
    def jump_target(self) -> int | None:
        """Absolute target offset for jumps, None otherwise"""
        return self.resolved_operand.value if self.is_jump else None

    @property
    def end_offset(self) -> int:
        return self.byte_offset + self.size

    def __str__(self) -> str:
        if self.operand_kind == OperandKind.Empty:
            return self.mnemonic

        return f'{self.mnemonic}({self.raw_arg}, {self.resolved_operand})'


@dataclass(frozen = True)
class CodeObject:
    """One compiled unit: module, class body or function"""
    name                    : str
    filename                : str
    flags                   : int
    cellvars                : tuple[str, ...]
    freevars                : tuple[str, ...]
    names                   : tuple[str, ...]
    varnames                : tuple[str, ...]
    local_count             : int
    arg_count               : int
    positional_only_count   : int
    keyword_only_count      : int
    stack_size              : int
    first_line_number       : int
    line_table              : bytes                                 # raw table, see line_starts()
    constants               : tuple[Constant, ...]
    instructions            : tuple[Instruction, ...]
    bytecode                : bytes = field(default = b'', repr = False)
    line_table_format       : LineTableFormat = LineTableFormat.Lnotab

    def is_closure(self) -> bool:
        return len(self.cellvars) + len(self.freevars) != 0

    @property
    def code_flags(self) -> CodeFlags:
        return CodeFlags(self.flags & sum(CodeFlags))

    def line_starts(self) -> list[tuple[int, int]]:
        """(byte_offset, line) pairs decoded from line_table"""
        from ..disasm.line_table import decode_line_table
        return decode_line_table(self.line_table, self.first_line_number, self.line_table_format)

    def nested_code(self) -> list['CodeObject']:
        """Code objects found directly in the constant pool, tuples included"""
        found = []
        todo = list(self.constants)

        while todo:
            const = todo.pop(0)
            match const.kind:
                case Constant.Kind.CODE:
                    found.append(const.value)

                case Constant.Kind.TUPLE | Constant.Kind.FROZENSET:
                    todo[0:0] = const.value

        return found

    def walk(self) -> Iterator['CodeObject']:
        """This code object and every nested one, pre-order"""
        yield self
        for child in self.nested_code():
            yield from child.walk()

    def __str__(self) -> str:
        return f'<code {self.name} at {self.filename}:{self.first_line_number}>'
