"""
Formatter for code object listings
"""

from common import *
from dataclasses import dataclass
from typing import Callable

from ..parser.types import CodeObject, Constant, Instruction, OperandKind

__all__ = (
    'Formatter',
    'FormatterContext',
)


@dataclass
class FormatterContext:
    """Context for formatter with callbacks"""
    format_constant : Callable[[Constant], str] = None      # constant -> text, str() if unset
    show_header     : bool = True                           # names, counts and flags above each listing
    recursive       : bool = True                           # also format nested code objects


class Formatter:
    """Format code object trees as dis-style listings"""

    MNEMONIC_WIDTH  = 24
    ARG_WIDTH       = 5

    def __init__(self, context: FormatterContext = None, indent: str = None):
        self.context = context or FormatterContext()
        self.indent = default_indent() if indent is None else indent
        self.formatted_codes: set[int] = set()

    def format_code(self, code: CodeObject) -> list[str]:
        """
        Format a code object and, if enabled, every nested one.

        Args:
            code: root code object

        Returns:
            List of formatted lines
        """
        self.formatted_codes.clear()

        lines = []
        for c in (code.walk() if self.context.recursive else [code]):
            # Constant pools can share a code object
            if id(c) in self.formatted_codes:
                continue

            self.formatted_codes.add(id(c))
            lines.extend(self._format_one(c))
            lines.append('')

        # Remove trailing empty line
        if lines and lines[-1] == '':
            lines.pop()

        return lines

    def _format_one(self, code: CodeObject) -> list[str]:
        lines = [f'Disassembly of {code}:']

        if self.context.show_header:
            lines.extend(self.indent + line for line in self.format_header(code))
            lines.append('')

        lines.extend(self.indent + self.format_instruction(inst) for inst in code.instructions)
        return lines

    def format_header(self, code: CodeObject) -> list[str]:
        lines = [
            f'args: {code.arg_count}, posonly: {code.positional_only_count}, kwonly: {code.keyword_only_count}',
            f'locals: {code.local_count}, stack: {code.stack_size}, flags: {code.code_flags}',
        ]

        for title, names in (
            ('names', code.names),
            ('varnames', code.varnames),
            ('cellvars', code.cellvars),
            ('freevars', code.freevars),
        ):
            if names:
                lines.append(f'{title}: {", ".join(names)}')

        if code.constants:
            lines.append('constants:')
            for i, const in enumerate(code.constants):
                lines.append(f'{self.indent}{i}: {self._format_constant(const)}')

        return lines

    def format_instruction(self, inst: Instruction) -> str:
        """Format one instruction: line, jump marker, offset, mnemonic, arg and operand"""
        line = f'{inst.source_line:>4}' if inst.source_line is not None else ' ' * 4
        marker = '>>' if inst.is_jump_target else '  '

        text = f'{line} {marker} {inst.byte_offset:6} {inst.mnemonic:<{self.MNEMONIC_WIDTH}}'

        if inst.operand_kind == OperandKind.Empty:
            return text.rstrip()

        text += f'{inst.raw_arg:>{self.ARG_WIDTH}}'

        match inst.operand_kind:
            case OperandKind.RawInt:
                return text

            case OperandKind.RelativeJump | OperandKind.AbsoluteJump:
                return f'{text} (to {inst.jump_target})'

            case OperandKind.Constant:
                return f'{text} ({self._format_constant(inst.resolved_operand)})'

            case _:
                return f'{text} ({inst.resolved_operand.value})'

    def _format_constant(self, const: Constant) -> str:
        if self.context.format_constant is not None:
            return self.context.format_constant(const)

        return str(const)
