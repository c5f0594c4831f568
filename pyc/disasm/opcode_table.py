"""
Versioned opcode tables

Each supported interpreter version is described by one YAML file in
`tables/` (or in the configured `opcode_table_dir`). The rest of the
pipeline is version agnostic and only consults the OpcodeTable built from
that data.
"""

from common import *
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Mapping
import logging

import yaml

from ..errors import UnsupportedVersion
from ..parser.types import LineTableFormat, OperandKind

__all__ = (
    'InstructionDescriptor',
    'OpcodeTable',
    'get_opcode_table',
    'registered_versions',
    'magic_for_version',
    'TABLE_DIR',
)

logger = logging.getLogger(__name__)

TABLE_DIR = Path(__file__).parent / 'tables'

# Operand kind names used in the table files
KIND_NAMES: dict[str, OperandKind] = {
    'local'         : OperandKind.Local,
    'name'          : OperandKind.Name,
    'free_or_cell'  : OperandKind.FreeOrCell,
    'const'         : OperandKind.Constant,
    'jrel'          : OperandKind.RelativeJump,
    'jabs'          : OperandKind.AbsoluteJump,
    'compare'       : OperandKind.Comparator,
    'int'           : OperandKind.RawInt,
}

LINE_TABLE_FORMATS: dict[str, LineTableFormat] = {
    'lnotab'        : LineTableFormat.Lnotab,
    'linetable'     : LineTableFormat.Linetable,
}


@dataclass(frozen = True)
class InstructionDescriptor:
    """Descriptor for an opcode in the table"""
    opcode          : int
    mnemonic        : str
    operand_kind    : OperandKind = OperandKind.Empty

    @property
    def has_argument(self) -> bool:
        return self.operand_kind != OperandKind.Empty

    @property
    def is_jump(self) -> bool:
        return self.operand_kind.is_jump


@dataclass(frozen = True, eq = False)
class OpcodeTable:
    """
    Immutable opcode -> descriptor mapping for one interpreter version.

    `magic` is the full 4-byte header tag, `jump_unit` the number of bytes
    one unit of a jump argument stands for (1 before 3.10, 2 from 3.10 on).
    """
    version             : str
    magic               : bytes
    descriptors         : Mapping[int, InstructionDescriptor]
    comparators         : tuple[str, ...]
    extended_arg        : int
    instruction_size    : int = 2
    jump_unit           : int = 1
    have_posonlyargcount: bool = True
    line_table_format   : LineTableFormat = LineTableFormat.Lnotab
    _by_mnemonic        : Mapping[str, InstructionDescriptor] = field(default = None, repr = False, compare = False)

    def __post_init__(self):
        by_mnemonic = {desc.mnemonic: desc for desc in self.descriptors.values()}
        object.__setattr__(self, '_by_mnemonic', MappingProxyType(by_mnemonic))

    def __contains__(self, opcode: int) -> bool:
        return opcode in self.descriptors

    def __len__(self) -> int:
        return len(self.descriptors)

    def get_descriptor(self, opcode: int) -> InstructionDescriptor | None:
        """Get instruction descriptor, None for opcodes the version does not define"""
        return self.descriptors.get(opcode)

    def opcode(self, mnemonic: str) -> int:
        """Numeric opcode for a mnemonic"""
        desc = self._by_mnemonic.get(mnemonic)
        if desc is None:
            raise ValueError(f'Unknown mnemonic for {self.version}: {mnemonic}')
        return desc.opcode

    def comparator(self, index: int) -> str | None:
        if 0 <= index < len(self.comparators):
            return self.comparators[index]
        return None

    @classmethod
    def from_dict(cls, data: dict, source: str = '<dict>') -> 'OpcodeTable':
        """Build a table from the parsed contents of a table file"""
        try:
            version     = str(data['version'])
            magic_num   = int(data['magic'])
            opcodes     = data['opcodes']
            ext_name    = data['extended_arg']

        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f'{source}: missing or invalid table field: {e}') from e

        if not isinstance(opcodes, dict) or not opcodes:
            raise ValueError(f'{source}: opcodes must be a non-empty mapping')

        descriptors: dict[int, InstructionDescriptor] = {}

        for mnemonic, entry in opcodes.items():
            if isinstance(entry, int):
                entry = [entry]

            if not isinstance(entry, list) or not 1 <= len(entry) <= 2:
                raise ValueError(f'{source}: bad entry for {mnemonic}: {entry!r}')

            opcode = entry[0]
            if not isinstance(opcode, int) or not 0 <= opcode <= 0xFF:
                raise ValueError(f'{source}: opcode of {mnemonic} out of range: {opcode!r}')

            if len(entry) == 2:
                kind = KIND_NAMES.get(entry[1])
                if kind is None:
                    raise ValueError(f'{source}: unknown operand kind for {mnemonic}: {entry[1]!r}')
            else:
                kind = OperandKind.Empty

            if opcode in descriptors:
                raise ValueError(f'{source}: opcode {opcode} defined twice ({descriptors[opcode].mnemonic}, {mnemonic})')

            descriptors[opcode] = InstructionDescriptor(opcode, str(mnemonic), kind)

        extended_arg = next((d.opcode for d in descriptors.values() if d.mnemonic == ext_name), None)
        if extended_arg is None:
            raise ValueError(f'{source}: extension opcode {ext_name!r} is not in the table')

        code_layout = data.get('code_object') or {}

        line_format = LINE_TABLE_FORMATS.get(code_layout.get('line_table', 'lnotab'))
        if line_format is None:
            raise ValueError(f'{source}: unknown line table format {code_layout.get("line_table")!r}')

        return cls(
            version              = version,
            magic                = magic_num.to_bytes(2, 'little') + b'\r\n',
            descriptors          = MappingProxyType(descriptors),
            comparators          = tuple(str(c) for c in data.get('comparators', ())),
            extended_arg         = extended_arg,
            instruction_size     = int(data.get('instruction_size', 2)),
            jump_unit            = int(data.get('jump_unit', 1)),
            have_posonlyargcount = bool(code_layout.get('posonlyargcount', True)),
            line_table_format    = line_format,
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> 'OpcodeTable':
        """Load a table from a YAML file"""
        path = Path(path)
        with open(path, 'r', encoding = 'utf-8') as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f'{path}: table file must contain a mapping')

        return cls.from_dict(data, source = str(path))


def _table_dirs() -> list[Path]:
    dirs = []
    extra = default_opcode_table_dir()
    if extra is not None:
        dirs.append(extra)

    dirs.append(TABLE_DIR)
    return dirs


def _table_file_name(version: str) -> str:
    return 'py' + version.replace('.', '') + '.yaml'


def registered_versions() -> list[str]:
    """Versions that have a table file, newest last"""
    versions = set()
    for d in _table_dirs():
        if not d.is_dir():
            continue

        for path in d.glob('py3*.yaml'):
            digits = path.stem[2:]
            versions.add(f'{digits[0]}.{digits[1:]}')

    return sorted(versions, key = lambda v: tuple(int(p) for p in v.split('.')))


@lru_cache(maxsize = None)
def _load_table(version: str, search: tuple[Path, ...]) -> OpcodeTable:
    for d in search:
        path = d / _table_file_name(version)
        if path.is_file():
            table = OpcodeTable.from_yaml(path)
            if table.version != version:
                raise ValueError(f'{path}: declares version {table.version}, expected {version}')

            logger.debug(f'Loaded opcode table {version} from {path} ({len(table)} opcodes)')
            return table

    raise UnsupportedVersion(f'no opcode table for Python {version}')


def get_opcode_table(version: str | None = None) -> OpcodeTable:
    """
    Get the opcode table of an interpreter version.

    Args:
        version: 'X.Y' version string, defaults to the configured target

    Raises:
        UnsupportedVersion: no table file exists for the version
    """
    version = version or default_target_version()
    return _load_table(str(version), tuple(_table_dirs()))


def magic_for_version(version: str) -> bytes:
    return get_opcode_table(version).magic
