"""
Code object builder and load entry points
"""

from common import *
from pathlib import Path
from typing import Any, Callable
import logging
import sys

from ..disasm.disassembler import Disassembler, DisassemblerContext
from ..disasm.opcode_table import OpcodeTable, get_opcode_table, registered_versions
from ..errors import CompileError, IntegerOverflow, MalformedInput, UnsupportedConstantKind, UnsupportedVersion
from .cursor import ByteCursor
from .header import HEADER_SIZE, HeaderInfo, detect_version, validate_header
from .marshal import CodeFields, MarshalDecoder
from .types import CodeObject, Constant, LineTableFormat

__all__ = (
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
)

logger = logging.getLogger(__name__)

Compiler = Callable[[str, str], Any]      # (source_text, filename) -> code handle


class CodeObjectBuilder(StrictBase):
    """
    Assembles CodeObject values.

    `build` is the marshal decoder's code callback; `from_handle` reads an
    in-memory code handle as produced by a compiler.
    """
    table           : OpcodeTable
    disassembler    : Disassembler
    max_int_bits    : int

    def __init__(self, table: OpcodeTable, max_int_bits: int | None = None):
        self.table          = table
        self.disassembler   = Disassembler(table)
        self.max_int_bits   = default_max_int_bits() if max_int_bits is None else max_int_bits

    @property
    def line_table_field(self) -> str:
        if self.table.line_table_format == LineTableFormat.Linetable:
            return 'co_linetable'
        return 'co_lnotab'

    # marshalled code objects

    def build(self, fields: CodeFields) -> CodeObject:
        name = self._expect_str(fields.name, 'co_name')

        return self._assemble(
            name                    = name,
            filename                = self._expect_str(fields.filename, 'co_filename'),
            flags                   = fields.flags,
            cellvars                = self._expect_names(fields.cellvars, 'co_cellvars'),
            freevars                = self._expect_names(fields.freevars, 'co_freevars'),
            names                   = self._expect_names(fields.names, 'co_names'),
            varnames                = self._expect_names(fields.varnames, 'co_varnames'),
            local_count             = fields.nlocals,
            arg_count               = fields.argcount,
            positional_only_count   = fields.posonlyargcount,
            keyword_only_count      = fields.kwonlyargcount,
            stack_size              = fields.stacksize,
            first_line_number       = fields.firstlineno,
            line_table              = self._expect_bytes(fields.line_table, self.line_table_field),
            constants               = self._expect_tuple(fields.consts, 'co_consts'),
            bytecode                = self._expect_bytes(fields.code, 'co_code'),
        )

    def _expect_str(self, const: Constant, field: str) -> str:
        if const.kind != Constant.Kind.STR:
            raise MalformedInput(f'{field} must be a string, got {const.kind}')
        return const.value

    def _expect_bytes(self, const: Constant, field: str) -> bytes:
        if const.kind != Constant.Kind.BYTES:
            raise MalformedInput(f'{field} must be bytes, got {const.kind}')
        return const.value

    def _expect_tuple(self, const: Constant, field: str) -> tuple[Constant, ...]:
        if const.kind != Constant.Kind.TUPLE:
            raise MalformedInput(f'{field} must be a tuple, got {const.kind}')
        return const.value

    def _expect_names(self, const: Constant, field: str) -> tuple[str, ...]:
        items = self._expect_tuple(const, field)
        return tuple(self._expect_str(item, f'{field} item') for item in items)

    # in-memory code handles

    def from_handle(self, handle: Any) -> CodeObject:
        """
        Build a CodeObject from a compiled code handle.

        The handle only needs the co_* attributes of a code object; nested
        code handles in co_consts are converted recursively.
        """

        def read(attr: str, kind: type, default: Any = None):
            if not hasattr(handle, attr):
                if default is not None:
                    return default
                raise MalformedInput(f'no field {attr} in {handle!r}')

            value = getattr(handle, attr)
            if not isinstance(value, kind):
                raise MalformedInput(f'field {attr} in {handle!r} is not a valid {kind.__name__}')
            return value

        def read_names(attr: str) -> tuple[str, ...]:
            names = read(attr, tuple)
            for name in names:
                if not isinstance(name, str):
                    raise MalformedInput(f'field {attr} in {handle!r} holds a non-string {name!r}')
            return names

        posonly_default = None if self.table.have_posonlyargcount else 0

        return self._assemble(
            name                    = read('co_name', str),
            filename                = read('co_filename', str),
            flags                   = read('co_flags', int),
            cellvars                = read_names('co_cellvars'),
            freevars                = read_names('co_freevars'),
            names                   = read_names('co_names'),
            varnames                = read_names('co_varnames'),
            local_count             = read('co_nlocals', int),
            arg_count               = read('co_argcount', int),
            positional_only_count   = read('co_posonlyargcount', int, posonly_default),
            keyword_only_count      = read('co_kwonlyargcount', int),
            stack_size              = read('co_stacksize', int),
            first_line_number       = read('co_firstlineno', int),
            line_table              = read(self.line_table_field, bytes),
            constants               = tuple(self.constant_from_value(v, i) for i, v in enumerate(read('co_consts', tuple))),
            bytecode                = read('co_code', bytes),
        )

    def constant_from_value(self, value: Any, index: int | None = None) -> Constant:
        """
        Convert one in-memory constant into a Constant.

        `index` is the position of the enclosing entry in co_consts and is
        reported as the offset of errors.
        """

        # bool before int, bool is a subclass of int
        if value is None:
            return Constant.none()

        if value is Ellipsis:
            return Constant.ellipsis()

        if isinstance(value, bool):
            return Constant.from_bool(value)

        if isinstance(value, int):
            bits = self.max_int_bits
            if bits and not -(1 << (bits - 1)) <= value < (1 << (bits - 1)):
                raise IntegerOverflow(value.bit_length() + 1, bits, index)
            return Constant.from_int(value)

        if isinstance(value, float):
            return Constant.from_float(value)

        if isinstance(value, complex):
            return Constant.from_complex(value)

        if isinstance(value, str):
            return Constant.from_str(value)

        if isinstance(value, bytes):
            return Constant.from_bytes(value)

        if isinstance(value, tuple):
            return Constant.from_tuple(self.constant_from_value(v, index) for v in value)

        if isinstance(value, frozenset):
            return Constant.from_frozenset(self.constant_from_value(v, index) for v in value)

        if hasattr(value, 'co_code'):
            return Constant.from_code(self.from_handle(value))

        raise UnsupportedConstantKind(type(value).__name__, index)

    # common

    def _assemble(self, *, constants: tuple[Constant, ...], bytecode: bytes, **attrs) -> CodeObject:
        context = DisassemblerContext(
            varnames            = attrs['varnames'],
            names               = attrs['names'],
            cellvars            = attrs['cellvars'],
            freevars            = attrs['freevars'],
            constants           = constants,
            line_table          = attrs['line_table'],
            line_table_format   = self.table.line_table_format,
            first_line_number   = attrs['first_line_number'],
            code_name           = attrs['name'],
        )

        instructions = self.disassembler.disasm_code(bytecode, context)

        code = CodeObject(
            constants           = constants,
            instructions        = instructions,
            bytecode            = bytecode,
            line_table_format   = self.table.line_table_format,
            **attrs,
        )

        logger.debug(f'Built {code} ({len(constants)} constants, {len(instructions)} instructions)')
        return code


def _resolve_table(version: str | None, data: bytes) -> OpcodeTable:
    version = version or default_target_version()
    if version == 'auto':
        version = detect_version(ByteCursor(data).read_bytes(4))

    return get_opcode_table(version)


def load_with_header(data: bytes, version: str | None = None) -> tuple[HeaderInfo, CodeObject]:
    """
    Load a .pyc image and also return its header.

    Args:
        data: whole container, header included
        version: target version ('3.8'), 'auto' to pick it from the magic,
            None for the configured default
    """
    cursor = ByteCursor(data)
    table = _resolve_table(version, data)

    header = validate_header(cursor, table.magic)

    builder = CodeObjectBuilder(table)
    decoder = MarshalDecoder(cursor, table, builder.build)
    root = decoder.decode()

    code = root.as_code()
    if code is None:
        raise MalformedInput(f'payload must be a code object, got {root.kind}', HEADER_SIZE)

    if not cursor.at_end():
        logger.warning(f'{cursor.remaining()} trailing byte(s) after the marshal payload')

    return header, code


def load(data: bytes, version: str | None = None) -> CodeObject:
    """Load a .pyc image into a CodeObject tree"""
    return load_with_header(data, version)[1]


def load_file(path: str | Path, version: str | None = None) -> CodeObject:
    """Load a .pyc file into a CodeObject tree"""
    path = Path(path)
    with open(path, 'rb') as f:
        data = f.read()

    logger.debug(f'Loading {path} ({len(data)} bytes)')
    return load(data, version)


def host_version() -> str:
    return f'{sys.version_info.major}.{sys.version_info.minor}'


def host_opcode_table(version: str | None = None) -> OpcodeTable:
    """
    Table for bytecode emitted by the running interpreter.

    Raises:
        UnsupportedVersion: `version` is given and differs from the host's,
            or the host has no table (3.11 and newer)
    """
    host = host_version()
    if version is not None and version != host:
        raise UnsupportedVersion(f'the builtin compiler emits Python {host} bytecode, not {version}')

    try:
        return get_opcode_table(host)

    except UnsupportedVersion as e:
        supported = ', '.join(registered_versions())
        raise UnsupportedVersion(
            f'running interpreter is Python {host}, source loading needs one of {supported} '
            f'or an explicit compiler'
        ) from e


def compile_source(source: str, filename: str) -> Any:
    """Default compiler: the running interpreter's builtin compile()"""
    try:
        return compile(source, filename, 'exec', dont_inherit = True)

    except SyntaxError as e:
        raise CompileError(e.msg or str(e), e.filename or filename, e.lineno, e.offset) from e

    except ValueError as e:
        # e.g. source containing null bytes
        raise CompileError(str(e), filename) from e


def load_code(handle: Any, version: str | None = None) -> CodeObject:
    """
    Build a CodeObject tree from an in-memory code handle.

    The handle's bytecode is disassembled with the table of `version`,
    which defaults to the running interpreter's version.
    """
    table = host_opcode_table() if version is None else get_opcode_table(version)
    return CodeObjectBuilder(table).from_handle(handle)


def load_source(source: str, filename: str, compiler: Compiler | None = None, version: str | None = None) -> CodeObject:
    """
    Compile source text and build its CodeObject tree.

    Args:
        compiler: (source, filename) -> code handle, raising CompileError;
            defaults to compile_source
        version: version whose bytecode the compiler emits; defaults to
            the running interpreter's version, and must be that version
            when the builtin compiler is used
    """
    if compiler is None:
        # checked before compiling
        table = host_opcode_table(version)
        handle = compile_source(source, filename)
        return CodeObjectBuilder(table).from_handle(handle)

    handle = compiler(source, filename)
    return load_code(handle, version)


def load_source_file(path: str | Path, compiler: Compiler | None = None, version: str | None = None) -> CodeObject:
    path = Path(path)
    with open(path, 'r', encoding = 'utf-8') as f:
        source = f.read()

    return load_source(source, str(path), compiler, version)


def load_from_file(path: str | Path, is_binary: bool, version: str | None = None) -> CodeObject:
    """Load either a .pyc file or a source file"""
    if is_binary:
        return load_file(path, version)

    return load_source_file(path, version = version)
