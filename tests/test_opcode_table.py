#!/usr/bin/env python3
'''Unit tests for versioned opcode tables'''

from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common import *
from pyc.errors import UnsupportedVersion
from pyc.parser import LineTableFormat, OperandKind
from pyc.disasm import *
import tempfile
import unittest


MINIMAL_TABLE = {
    'version'       : '3.6',
    'magic'         : 3379,
    'extended_arg'  : 'EXTENDED_ARG',
    'comparators'   : ['<'],
    'opcodes'       : {
        'NOP'           : [9],
        'LOAD_CONST'    : [100, 'const'],
        'EXTENDED_ARG'  : [144, 'int'],
    },
}


class TestBundledTables(unittest.TestCase):
    '''Test the tables shipped with the package'''

    def test_registered(self):
        versions = registered_versions()
        for version in ('3.7', '3.8', '3.9', '3.10'):
            self.assertIn(version, versions)

        self.assertEqual(versions[-1], '3.10')

    def test_magic(self):
        self.assertEqual(magic_for_version('3.7'), (3394).to_bytes(2, 'little') + b'\r\n')
        self.assertEqual(magic_for_version('3.8'), (3413).to_bytes(2, 'little') + b'\r\n')
        self.assertEqual(magic_for_version('3.9'), (3425).to_bytes(2, 'little') + b'\r\n')
        self.assertEqual(magic_for_version('3.10'), (3439).to_bytes(2, 'little') + b'\r\n')

    def test_layout(self):
        self.assertFalse(get_opcode_table('3.7').have_posonlyargcount)
        self.assertTrue(get_opcode_table('3.8').have_posonlyargcount)

        for version in ('3.7', '3.8', '3.9'):
            table = get_opcode_table(version)
            self.assertEqual(table.instruction_size, 2)
            self.assertEqual(table.jump_unit, 1)
            self.assertEqual(table.extended_arg, 144)
            self.assertEqual(table.line_table_format, LineTableFormat.Lnotab)

    def test_py310_layout(self):
        table = get_opcode_table('3.10')

        self.assertEqual(table.instruction_size, 2)
        self.assertEqual(table.jump_unit, 2)
        self.assertEqual(table.extended_arg, 144)
        self.assertTrue(table.have_posonlyargcount)
        self.assertEqual(table.line_table_format, LineTableFormat.Linetable)

        self.assertEqual(table.opcode('RERAISE'), 119)
        self.assertEqual(table.get_descriptor(119).operand_kind, OperandKind.RawInt)
        self.assertEqual(table.opcode('GEN_START'), 129)
        self.assertIsNone(table.get_descriptor(48))
        self.assertEqual(table.get_descriptor(table.opcode('POP_JUMP_IF_FALSE')).operand_kind, OperandKind.AbsoluteJump)
        self.assertEqual(table.comparator(5), '>=')

    def test_descriptors(self):
        table = get_opcode_table('3.8')

        desc = table.get_descriptor(100)
        self.assertEqual(desc.mnemonic, 'LOAD_CONST')
        self.assertEqual(desc.operand_kind, OperandKind.Constant)
        self.assertTrue(desc.has_argument)

        self.assertFalse(table.get_descriptor(table.opcode('RETURN_VALUE')).has_argument)
        self.assertTrue(table.get_descriptor(table.opcode('JUMP_FORWARD')).is_jump)
        self.assertIsNone(table.get_descriptor(0))
        self.assertNotIn(0, table)

        with self.assertRaises(ValueError):
            table.opcode('NO_SUCH_OP')

    def test_version_differences(self):
        self.assertIn('SETUP_LOOP', [d.mnemonic for d in get_opcode_table('3.7').descriptors.values()])
        self.assertIsNone(get_opcode_table('3.8').get_descriptor(120))
        self.assertEqual(get_opcode_table('3.9').opcode('RERAISE'), 48)
        self.assertEqual(get_opcode_table('3.9').comparator(6), None)
        self.assertEqual(get_opcode_table('3.8').comparator(10), 'exception match')

    def test_cached(self):
        self.assertIs(get_opcode_table('3.8'), get_opcode_table('3.8'))

    def test_default_version(self):
        self.assertEqual(get_opcode_table().version, default_target_version())

    def test_unknown_version(self):
        for version in ('2.7', '3.12', 'bogus'):
            with self.subTest(version = version):
                with self.assertRaises(UnsupportedVersion):
                    get_opcode_table(version)


class TestTableValidation(unittest.TestCase):
    '''Test OpcodeTable.from_dict'''

    def test_minimal(self):
        table = OpcodeTable.from_dict(MINIMAL_TABLE)
        self.assertEqual(table.version, '3.6')
        self.assertEqual(len(table), 3)
        self.assertEqual(table.extended_arg, 144)
        self.assertTrue(table.have_posonlyargcount)

    def test_invalid(self):
        cases = {
            'missing field'     : {k: v for k, v in MINIMAL_TABLE.items() if k != 'magic'},
            'empty opcodes'     : {**MINIMAL_TABLE, 'opcodes': {}},
            'duplicate opcode'  : {**MINIMAL_TABLE, 'opcodes': {**MINIMAL_TABLE['opcodes'], 'OTHER': [9]}},
            'unknown kind'      : {**MINIMAL_TABLE, 'opcodes': {**MINIMAL_TABLE['opcodes'], 'OTHER': [1, 'bogus']}},
            'opcode range'      : {**MINIMAL_TABLE, 'opcodes': {**MINIMAL_TABLE['opcodes'], 'OTHER': [256]}},
            'no extended arg'   : {**MINIMAL_TABLE, 'extended_arg': 'MISSING'},
            'line table format' : {**MINIMAL_TABLE, 'code_object': {'line_table': 'bogus'}},
        }

        for name, data in cases.items():
            with self.subTest(case = name):
                with self.assertRaises(ValueError):
                    OpcodeTable.from_dict(data)


class TestTableDirectory(unittest.TestCase):
    '''Test loading tables from the configured directory'''

    def tearDown(self):
        get_config().set('opcode_table_dir', None)

    def test_extra_directory(self):
        with tempfile.TemporaryDirectory() as tmp:
            lines = [
                "version: '3.6'",
                'magic: 3379',
                'extended_arg: EXTENDED_ARG',
                'opcodes:',
                '  NOP: [9]',
                '  EXTENDED_ARG: [144, int]',
            ]
            (Path(tmp) / 'py36.yaml').write_text('\n'.join(lines) + '\n', encoding = 'utf-8')

            get_config().set('opcode_table_dir', tmp)

            self.assertIn('3.6', registered_versions())
            table = get_opcode_table('3.6')
            self.assertEqual(table.magic, (3379).to_bytes(2, 'little') + b'\r\n')
            self.assertEqual(table.opcode('NOP'), 9)


if __name__ == '__main__':
    unittest.main()
