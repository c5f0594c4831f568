"""
Marshal format decoder

Decodes the type-tagged, recursive encoding used for .pyc payloads into
Constant values. Code objects are collected as CodeFields and handed to a
callback which turns them into CodeObject values, so nested code objects
are finished before the code object that contains them.
"""

from common import *
from typing import Callable
import logging

from ..disasm.opcode_table import OpcodeTable
from ..errors import IntegerOverflow, MalformedInput, PycError, UnsupportedConstantKind
from .cursor import ByteCursor
from .types import CodeObject, Constant

__all__ = (
    'MarshalType',
    'FLAG_REF',
    'CodeFields',
    'MarshalDecoder',
)

logger = logging.getLogger(__name__)

FLAG_REF = 0x80

# Arbitrary-precision ints are stored as base 2**15 digits
LONG_SHIFT  = 15
LONG_BASE   = 1 << LONG_SHIFT


class MarshalType(IntEnum2):
    NULL                = ord('0')
    NONE                = ord('N')
    FALSE               = ord('F')
    TRUE                = ord('T')
    STOPITER            = ord('S')
    ELLIPSIS            = ord('.')
    INT                 = ord('i')
    INT64               = ord('I')
    FLOAT               = ord('f')
    BINARY_FLOAT        = ord('g')
    COMPLEX             = ord('x')
    BINARY_COMPLEX      = ord('y')
    LONG                = ord('l')
    STRING              = ord('s')
    INTERNED            = ord('t')
    REF                 = ord('r')
    TUPLE               = ord('(')
    LIST                = ord('[')
    DICT                = ord('{')
    CODE                = ord('c')
    UNICODE             = ord('u')
    UNKNOWN             = ord('?')
    SET                 = ord('<')
    FROZENSET           = ord('>')
    ASCII               = ord('a')
    ASCII_INTERNED      = ord('A')
    SMALL_TUPLE         = ord(')')
    SHORT_ASCII         = ord('z')
    SHORT_ASCII_INTERNED = ord('Z')


class CodeFields(StrictBase):
    """Raw fields of a marshalled code object, in stream order"""
    argcount        : int
    posonlyargcount : int
    kwonlyargcount  : int
    nlocals         : int
    stacksize       : int
    flags           : int
    code            : Constant
    consts          : Constant
    names           : Constant
    varnames        : Constant
    freevars        : Constant
    cellvars        : Constant
    filename        : Constant
    name            : Constant
    firstlineno     : int
    line_table      : Constant              # co_lnotab, or co_linetable on 3.10
    offset          : int                   # stream offset of the 'c' tag

    def __init__(self, offset: int):
        self.offset = offset
        self.posonlyargcount = 0


_RESERVED = object()


class MarshalDecoder:
    """
    Decodes one marshalled value from a cursor.

    The back-reference table and nesting depth are per decoder; create one
    decoder per payload.
    """

    def __init__(
        self,
        cursor      : ByteCursor,
        table       : OpcodeTable,
        on_code     : Callable[[CodeFields], CodeObject],
        *,
        max_int_bits: int | None = None,
        max_depth   : int | None = None,
    ):
        self.cursor     = cursor
        self.table      = table
        self.on_code    = on_code
        self.max_int_bits = default_max_int_bits() if max_int_bits is None else max_int_bits
        self.max_depth  = default_max_marshal_depth() if max_depth is None else max_depth

        self.refs: list = []
        self.depth = 0

    def decode(self) -> Constant:
        """Decode exactly one value starting at the cursor position"""
        return self.read_object()

    def read_object(self) -> Constant:
        cursor = self.cursor
        offset = cursor.position()

        code = cursor.read_u8()
        flag = bool(code & FLAG_REF)
        tag = code & ~FLAG_REF

        self.depth += 1
        try:
            if self.depth > self.max_depth:
                raise MalformedInput(f'marshal nesting deeper than {self.max_depth}', offset)

            return self._dispatch(tag, flag, offset)

        finally:
            self.depth -= 1

    def _dispatch(self, tag: int, flag: bool, offset: int) -> Constant:
        cursor = self.cursor

        match tag:
            case MarshalType.NONE:
                return Constant.none()

            case MarshalType.TRUE:
                return Constant.from_bool(True)

            case MarshalType.FALSE:
                return Constant.from_bool(False)

            case MarshalType.ELLIPSIS:
                return Constant.ellipsis()

            case MarshalType.REF:
                return self._read_ref(offset)

            case MarshalType.INT:
                number = cursor.read_i32_le()
                self._check_int_range(number, offset)
                value = Constant.from_int(number)

            case MarshalType.LONG:
                value = Constant.from_int(self._read_long(offset))

            case MarshalType.BINARY_FLOAT:
                value = Constant.from_float(cursor.read_f64_le())

            case MarshalType.FLOAT:
                value = Constant.from_float(self._read_float_text())

            case MarshalType.BINARY_COMPLEX:
                real = cursor.read_f64_le()
                imag = cursor.read_f64_le()
                value = Constant.from_complex(complex(real, imag))

            case MarshalType.COMPLEX:
                real = self._read_float_text()
                imag = self._read_float_text()
                value = Constant.from_complex(complex(real, imag))

            case MarshalType.STRING:
                value = Constant.from_bytes(cursor.read_bytes(self._read_size('bytes')))

            case MarshalType.UNICODE | MarshalType.INTERNED:
                value = Constant.from_str(self._decode_text(cursor.read_bytes(self._read_size('string')), 'utf-8', offset))

            case MarshalType.ASCII | MarshalType.ASCII_INTERNED:
                value = Constant.from_str(self._decode_text(cursor.read_bytes(self._read_size('string')), 'latin-1', offset))

            case MarshalType.SHORT_ASCII | MarshalType.SHORT_ASCII_INTERNED:
                value = Constant.from_str(self._decode_text(cursor.read_bytes(cursor.read_u8()), 'latin-1', offset))

            case MarshalType.TUPLE:
                index = self._reserve(flag)
                count = self._read_size('tuple')
                return self._insert(index, Constant.from_tuple(self._read_items(count)))

            case MarshalType.SMALL_TUPLE:
                index = self._reserve(flag)
                count = cursor.read_u8()
                return self._insert(index, Constant.from_tuple(self._read_items(count)))

            case MarshalType.FROZENSET:
                index = self._reserve(flag)
                count = self._read_size('frozenset')
                return self._insert(index, Constant.from_frozenset(self._read_items(count)))

            case MarshalType.CODE:
                index = self._reserve(flag)
                return self._insert(index, self._read_code(offset))

            case _:
                raise UnsupportedConstantKind(tag, offset)

        # Leaf values have no children, registering them after decoding keeps the order
        if flag:
            self.refs.append(value)

        return value

    # references

    def _reserve(self, flag: bool) -> int | None:
        if not flag:
            return None

        self.refs.append(_RESERVED)
        return len(self.refs) - 1

    def _insert(self, index: int | None, value: Constant) -> Constant:
        if index is not None:
            self.refs[index] = value

        return value

    def _read_ref(self, offset: int) -> Constant:
        index = self.cursor.read_u32_le()

        if index >= len(self.refs):
            raise MalformedInput(f'back reference {index} out of range ({len(self.refs)} entries)', offset)

        value = self.refs[index]
        if value is _RESERVED:
            raise MalformedInput(f'back reference {index} to an object still being decoded', offset)

        return value

    # primitives

    def _read_size(self, what: str) -> int:
        offset = self.cursor.position()
        size = self.cursor.read_i32_le()
        if size < 0:
            raise MalformedInput(f'negative {what} size {size}', offset)

        return size

    def _read_items(self, count: int) -> list[Constant]:
        return [self.read_object() for _ in range(count)]

    def _decode_text(self, data: bytes, encoding: str, offset: int) -> str:
        try:
            return data.decode(encoding, 'surrogatepass' if encoding == 'utf-8' else 'strict')

        except UnicodeDecodeError as e:
            raise MalformedInput(f'invalid {encoding} string: {e.reason}', offset) from e

    def _read_float_text(self) -> float:
        offset = self.cursor.position()
        text = self.cursor.read_bytes(self.cursor.read_u8())

        try:
            return float(text.decode('ascii'))

        except (UnicodeDecodeError, ValueError) as e:
            raise MalformedInput(f'invalid float literal {text!r}', offset) from e

    def _read_long(self, offset: int) -> int:
        cursor = self.cursor
        count = cursor.read_i32_le()
        if count == 0:
            return 0

        value = 0
        for i in range(abs(count)):
            digit_pos = cursor.position()
            digit = cursor.read_u16_le()
            if digit >= LONG_BASE:
                raise MalformedInput(f'long digit 0x{digit:X} out of range', digit_pos)

            if digit == 0 and i == abs(count) - 1:
                raise MalformedInput('unnormalized long data', digit_pos)

            value |= digit << (i * LONG_SHIFT)

        if count < 0:
            value = -value

        self._check_int_range(value, offset)
        return value

    def _check_int_range(self, value: int, offset: int):
        bits = self.max_int_bits
        if not bits:
            return

        if not -(1 << (bits - 1)) <= value < (1 << (bits - 1)):
            raise IntegerOverflow(value.bit_length() + 1, bits, offset)

    # code objects

    def _read_code(self, offset: int) -> Constant:
        cursor = self.cursor
        fields = CodeFields(offset)

        fields.argcount         = cursor.read_i32_le()
        if self.table.have_posonlyargcount:
            fields.posonlyargcount = cursor.read_i32_le()
        fields.kwonlyargcount   = cursor.read_i32_le()
        fields.nlocals          = cursor.read_i32_le()
        fields.stacksize        = cursor.read_i32_le()
        fields.flags            = cursor.read_i32_le()
        fields.code             = self.read_object()
        fields.consts           = self.read_object()
        fields.names            = self.read_object()
        fields.varnames         = self.read_object()
        fields.freevars         = self.read_object()
        fields.cellvars         = self.read_object()
        fields.filename         = self.read_object()
        fields.name             = self.read_object()
        fields.firstlineno      = cursor.read_i32_le()
        fields.line_table       = self.read_object()

        try:
            code = self.on_code(fields)

        except PycError as e:
            if e.offset is None:
                e.offset = offset
            raise

        return Constant.from_code(code)
