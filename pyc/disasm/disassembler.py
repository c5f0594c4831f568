"""
Linear disassembler for fixed-width CPython bytecode
"""

from common import *
from dataclasses import dataclass, field
import logging

from ..errors import MalformedInstruction
from ..parser.types import Constant, Instruction, LineTableFormat, OperandKind
from .line_table import decode_line_table
from .opcode_table import InstructionDescriptor, OpcodeTable

__all__ = (
    'Disassembler',
    'DisassemblerContext',
)

logger = logging.getLogger(__name__)


@dataclass
class DisassemblerContext:
    """Symbol tables and line info of the code object being disassembled"""
    varnames            : tuple[str, ...]       = ()
    names               : tuple[str, ...]       = ()
    cellvars            : tuple[str, ...]       = ()
    freevars            : tuple[str, ...]       = ()
    constants           : tuple[Constant, ...]  = ()
    line_table          : bytes                 = b''
    line_table_format   : LineTableFormat       = LineTableFormat.Lnotab
    first_line_number   : int                   = 0
    code_name           : str                   = ''


@dataclass
class _Slot:
    """Instruction decoded before jump targets are known"""
    descriptor  : InstructionDescriptor
    raw_arg     : int
    operand     : Constant
    offset      : int                   # first byte, prefixes included
    size        : int
    source_line : int | None = None
    targets     : list[int] = field(default_factory = list)


class Disassembler:
    """
    Turns a code object's instruction bytes into Instruction values.

    Works with any interpreter version via the OpcodeTable it is given.
    """

    def __init__(self, table: OpcodeTable):
        self.table = table

    def disasm_code(self, bytecode: bytes, context: DisassemblerContext) -> tuple[Instruction, ...]:
        """
        Disassemble a whole instruction stream.

        Args:
            bytecode: raw co_code bytes
            context: symbol tables used to resolve operands

        Returns:
            Instructions ordered by byte offset

        Raises:
            MalformedInstruction: bad opcode, dangling EXTENDED_ARG, operand
                index out of range or jump outside the stream
        """
        width = self.table.instruction_size

        if len(bytecode) % width:
            raise MalformedInstruction(
                f'instruction stream length {len(bytecode)} is not a multiple of {width}',
                len(bytecode) - len(bytecode) % width,
                context.code_name,
            )

        slots = self._decode_slots(bytecode, context)
        self._assign_lines(slots, context)

        # Second pass: mark jump targets
        owner: dict[int, _Slot] = {}
        for slot in slots:
            for pos in range(slot.offset, slot.offset + slot.size, width):
                owner[pos] = slot

        targeted: set[int] = set()
        for slot in slots:
            for target in slot.targets:
                targeted.add(owner[target].offset)

        instructions = tuple(
            Instruction(
                mnemonic            = slot.descriptor.mnemonic,
                opcode              = slot.descriptor.opcode,
                raw_arg             = slot.raw_arg,
                resolved_operand    = slot.operand,
                byte_offset         = slot.offset,
                source_line         = slot.source_line,
                is_jump_target      = slot.offset in targeted,
                operand_kind        = slot.descriptor.operand_kind,
                size                = slot.size,
            )
            for slot in slots
        )

        logger.debug(f'Disassembled {context.code_name or "<code>"}: {len(instructions)} instructions')
        return instructions

    def _decode_slots(self, bytecode: bytes, context: DisassemblerContext) -> list[_Slot]:
        table = self.table
        width = table.instruction_size

        slots: list[_Slot] = []
        pending = 0             # accumulated EXTENDED_ARG high bits
        start = None            # offset of the first prefix of the current instruction

        for pos in range(0, len(bytecode), width):
            opcode = bytecode[pos]
            arg = bytecode[pos + 1]

            if start is None:
                start = pos

            descriptor = table.get_descriptor(opcode)
            if descriptor is None:
                raise MalformedInstruction(f'unknown opcode {opcode} for Python {table.version}', pos, context.code_name)

            if opcode == table.extended_arg:
                pending = (pending | arg) << 8
                continue

            raw_arg = pending | arg if descriptor.has_argument else 0
            pending = 0

            operand, targets = self._resolve_operand(descriptor, raw_arg, pos, len(bytecode), context)

            slots.append(_Slot(
                descriptor  = descriptor,
                raw_arg     = raw_arg,
                operand     = operand,
                offset      = start,
                size        = pos + width - start,
                targets     = targets,
            ))

            start = None

        if start is not None:
            raise MalformedInstruction('EXTENDED_ARG at the end of the instruction stream', start, context.code_name)

        return slots

    def _resolve_operand(
        self,
        descriptor  : InstructionDescriptor,
        raw_arg     : int,
        pos         : int,
        code_size   : int,
        context     : DisassemblerContext,
    ) -> tuple[Constant, list[int]]:
        """Resolve the argument of the instruction whose opcode slot is at pos"""

        def lookup(seq: tuple, what: str):
            if raw_arg >= len(seq):
                raise MalformedInstruction(
                    f'{descriptor.mnemonic}: {what} index {raw_arg} out of range ({len(seq)} entries)',
                    pos,
                    context.code_name,
                )
            return seq[raw_arg]

        def jump(target: int) -> tuple[Constant, list[int]]:
            if not 0 <= target < code_size:
                raise MalformedInstruction(
                    f'{descriptor.mnemonic}: jump target 0x{target:X} outside the instruction stream (size 0x{code_size:X})',
                    pos,
                    context.code_name,
                )

            if target % self.table.instruction_size:
                raise MalformedInstruction(
                    f'{descriptor.mnemonic}: jump target 0x{target:X} is not on an instruction boundary',
                    pos,
                    context.code_name,
                )

            return Constant.from_int(target), [target]

        match descriptor.operand_kind:
            case OperandKind.Empty:
                return Constant.none(), []

            case OperandKind.Local:
                return Constant.from_str(lookup(context.varnames, 'varnames')), []

            case OperandKind.Name:
                return Constant.from_str(lookup(context.names, 'names')), []

            case OperandKind.FreeOrCell:
                return Constant.from_str(lookup(context.cellvars + context.freevars, 'cell/free variable')), []

            case OperandKind.Constant:
                return lookup(context.constants, 'constant'), []

            case OperandKind.RelativeJump:
                return jump(pos + self.table.instruction_size + raw_arg * self.table.jump_unit)

            case OperandKind.AbsoluteJump:
                return jump(raw_arg * self.table.jump_unit)

            case OperandKind.Comparator:
                return Constant.from_str(lookup(self.table.comparators, 'comparison operator')), []

            case OperandKind.RawInt:
                return Constant.from_int(raw_arg), []

        raise MalformedInstruction(f'unhandled operand kind {descriptor.operand_kind}', pos, context.code_name)

    def _assign_lines(self, slots: list[_Slot], context: DisassemblerContext):
        """Attach source lines to the instructions that start them"""
        if not slots:
            return

        line_starts = decode_line_table(context.line_table, context.first_line_number, context.line_table_format)

        index = 0
        for offset, line in line_starts:
            while index < len(slots) and slots[index].offset + slots[index].size <= offset:
                index += 1

            if index == len(slots):
                break

            slot = slots[index]
            if slot.offset <= offset and slot.source_line is None:
                slot.source_line = line
