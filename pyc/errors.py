"""
Errors raised while loading code objects.

Every error is fatal to the load that raised it and records the offset at
which it was detected: a byte offset into the container for header and
marshal errors, an offset into the instruction stream for disassembly errors,
an offset into the line table for line table errors and the index into
co_consts for constants of in-memory code handles.
"""

__all__ = (
    'PycError',
    'TruncatedInput',
    'InvalidMagicError',
    'UnsupportedVersion',
    'MalformedInput',
    'UnsupportedConstantKind',
    'IntegerOverflow',
    'MalformedInstruction',
    'CompileError',
)


class PycError(Exception):
    """Base class for all loader errors"""

    def __init__(self, message: str, offset: int | None = None):
        super().__init__(message)
        self.message = message
        self.offset = offset

    def __str__(self) -> str:
        if self.offset is None:
            return self.message

        return f'{self.message} @ 0x{self.offset:X}'


class TruncatedInput(PycError):
    """Fewer bytes remain than a read asked for"""

    def __init__(self, offset: int, wanted: int, available: int):
        super().__init__(f'not enough data: wanted {wanted} byte(s), {available} available', offset)
        self.wanted = wanted
        self.available = available


class InvalidMagicError(PycError):
    """The container does not start with the expected magic tag"""


class UnsupportedVersion(InvalidMagicError):
    """The input targets an interpreter version without an opcode table"""


class MalformedInput(PycError):
    """Structural violation in the container or marshal encoding"""


class UnsupportedConstantKind(PycError):
    """A marshal type tag (or in-memory value type) outside the supported set"""

    def __init__(self, tag: int | str, offset: int | None = None):
        if isinstance(tag, int):
            text = f'{chr(tag)!r} (0x{tag:02X})' if 0x20 <= tag < 0x7F else f'0x{tag:02X}'
        else:
            text = tag

        super().__init__(f'unsupported constant kind {text}', offset)
        self.tag = tag


class IntegerOverflow(PycError):
    """An integer literal does not fit the configured width"""

    def __init__(self, value_bits: int, max_bits: int, offset: int | None = None):
        super().__init__(f'integer constant of {value_bits} bits exceeds the {max_bits}-bit limit', offset)
        self.value_bits = value_bits
        self.max_bits = max_bits


class MalformedInstruction(PycError):
    """An instruction cannot be decoded or its operand cannot be resolved"""

    def __init__(self, message: str, offset: int | None = None, code_name: str | None = None):
        if code_name:
            message = f'{code_name}: {message}'

        super().__init__(message, offset)
        self.code_name = code_name


class CompileError(PycError):
    """The compiler collaborator rejected the source text"""

    def __init__(self, message: str, filename: str, lineno: int | None = None, column: int | None = None):
        super().__init__(message)
        self.filename = filename
        self.lineno = lineno
        self.column = column

    def __str__(self) -> str:
        where = self.filename
        if self.lineno is not None:
            where = f'{where}:{self.lineno}'
            if self.column is not None:
                where = f'{where}:{self.column}'

        return f'{where}: {self.message}'
