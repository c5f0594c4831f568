#!/usr/bin/env python3
'''Unit tests for the load entry points'''

from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from common import *
from pyc import *
from marshal_writer import CodeFixture, assemble, dumps, lnotab, pyc_header, pyc_image
from types import SimpleNamespace
from unittest import mock
import dis
import tempfile
import unittest

HOST_SUPPORTED = host_version() in registered_versions()

COUNT_SOURCE = '''\
def count(n):
    total = 0
    for i in range(n):
        if i % 2:
            total += i
    return total
'''


def make_module(version: str = '3.8') -> CodeFixture:
    table = get_opcode_table(version)

    func = CodeFixture(
        name        = 'add_one',
        argcount    = 1,
        nlocals     = 1,
        stacksize   = 2,
        flags       = 0x43,
        firstlineno = 2,
        varnames    = ('x',),
        consts      = (None, 1),
        code        = assemble(table, ('LOAD_FAST', 0), ('LOAD_CONST', 1), 'BINARY_ADD', 'RETURN_VALUE'),
        lnotab      = lnotab((0, 1)),
    )

    return CodeFixture(
        name        = '<module>',
        stacksize   = 2,
        consts      = (func, 'add_one', None),
        names       = ('add_one',),
        code        = assemble(
            table,
            ('LOAD_CONST', 0),
            ('LOAD_CONST', 1),
            ('MAKE_FUNCTION', 0),
            ('STORE_NAME', 0),
            ('LOAD_CONST', 2),
            'RETURN_VALUE',
        ),
        lnotab      = lnotab((8, 3)),
    )


def fake_handle(table, **fields):
    values = dict(
        co_name             = '<module>',
        co_filename         = 'fake.py',
        co_flags            = 0x40,
        co_cellvars         = (),
        co_freevars         = (),
        co_names            = (),
        co_varnames         = (),
        co_nlocals          = 0,
        co_argcount         = 0,
        co_posonlyargcount  = 0,
        co_kwonlyargcount   = 0,
        co_stacksize        = 1,
        co_firstlineno      = 1,
        co_lnotab           = b'',
        co_consts           = (None,),
        co_code             = assemble(table, ('LOAD_CONST', 0), 'RETURN_VALUE'),
    )
    values.update(fields)
    return SimpleNamespace(**values)


class TestLoad(unittest.TestCase):
    '''Test loading .pyc images'''

    def test_module(self):
        code = load(pyc_image(make_module()), '3.8')

        self.assertEqual(code.name, '<module>')
        self.assertEqual(code.names, ('add_one',))
        self.assertEqual([i.mnemonic for i in code.instructions], [
            'LOAD_CONST', 'LOAD_CONST', 'MAKE_FUNCTION', 'STORE_NAME', 'LOAD_CONST', 'RETURN_VALUE',
        ])
        self.assertEqual(code.instructions[1].resolved_operand, Constant.from_str('add_one'))
        self.assertEqual(code.instructions[0].source_line, 1)
        self.assertEqual(code.instructions[4].source_line, 4)

        func = code.instructions[0].resolved_operand.as_code()
        self.assertIsNotNone(func)
        self.assertEqual(func.name, 'add_one')
        self.assertEqual(func.arg_count, 1)
        self.assertEqual(func.varnames, ('x',))
        self.assertEqual(func.instructions[0].resolved_operand, Constant.from_str('x'))
        self.assertEqual(func.instructions[1].resolved_operand, Constant.from_int(1))
        self.assertEqual(func.line_starts(), [(0, 3)])
        self.assertEqual(str(func.code_flags), 'OPTIMIZED|NEWLOCALS|NOFREE')

    def test_round_trip(self):
        def to_fixture(code):
            return CodeFixture(
                code            = code.bytecode,
                consts          = tuple(to_value(c) for c in code.constants),
                names           = code.names,
                varnames        = code.varnames,
                freevars        = code.freevars,
                cellvars        = code.cellvars,
                filename        = code.filename,
                name            = code.name,
                firstlineno     = code.first_line_number,
                lnotab          = code.line_table,
                argcount        = code.arg_count,
                posonlyargcount = code.positional_only_count,
                kwonlyargcount  = code.keyword_only_count,
                nlocals         = code.local_count,
                stacksize       = code.stack_size,
                flags           = code.flags,
            )

        def to_value(const):
            match const.kind:
                case Constant.Kind.CODE:
                    return to_fixture(const.value)
                case Constant.Kind.TUPLE:
                    return tuple(to_value(c) for c in const.value)
                case _:
                    return const.value

        first = load(pyc_image(make_module()), '3.8')
        second = load(pyc_image(to_fixture(first)), '3.8')

        self.assertEqual(first, second)

    def test_walk(self):
        code = load(pyc_image(make_module()), '3.8')
        self.assertEqual([c.name for c in code.walk()], ['<module>', 'add_one'])
        self.assertEqual(code.nested_code()[0].name, 'add_one')

    def test_versions(self):
        for version in ('3.7', '3.8', '3.9', '3.10'):
            with self.subTest(version = version):
                data = pyc_image(make_module(version), version)
                self.assertEqual(load(data, version).nested_code()[0].name, 'add_one')
                self.assertEqual(load(data, 'auto').name, '<module>')

    def test_py310_image(self):
        table = get_opcode_table('3.10')
        fixture = CodeFixture(
            consts      = (None,),
            code        = assemble(table, 'NOP', ('LOAD_CONST', 0), ('POP_JUMP_IF_FALSE', 1), 'RETURN_VALUE'),
            lnotab      = bytes([2, 0, 4, 1, 2, 0x80]),
        )

        code = load(pyc_image(fixture, '3.10'), 'auto')

        self.assertEqual(code.line_table_format, LineTableFormat.Linetable)
        self.assertEqual(code.instructions[2].jump_target, 2)
        self.assertEqual([i.is_jump_target for i in code.instructions], [False, True, False, False])
        self.assertEqual([i.source_line for i in code.instructions], [1, 2, None, None])
        self.assertEqual(code.line_starts(), [(0, 1), (2, 2)])

    def test_default_version(self):
        self.assertEqual(default_target_version(), '3.8')
        self.assertEqual(load(pyc_image(make_module())).name, '<module>')

    def test_header(self):
        header, code = load_with_header(pyc_image(make_module(), flags = 1, trailing = b'\x11' * 8), '3.8')
        self.assertTrue(header.is_hash_based)
        self.assertEqual(header.source_hash, b'\x11' * 8)
        self.assertEqual(code.name, '<module>')

    def test_wrong_version(self):
        with self.assertRaises(UnsupportedVersion):
            load(pyc_image(make_module('3.7'), '3.7'), '3.8')

    def test_bad_magic(self):
        with self.assertRaises(UnsupportedVersion) as cm:
            load(b'\xAA' * 16 + dumps(CodeFixture()), '3.8')

        self.assertEqual(cm.exception.offset, 0)

        with self.assertRaises(UnsupportedVersion):
            load(b'\xAA' * 16 + dumps(CodeFixture()), 'auto')

    def test_truncated(self):
        for version in ('3.8', 'auto'):
            with self.subTest(version = version):
                with self.assertRaises(TruncatedInput):
                    load(b'\x55\x0d', version)

        data = pyc_image(make_module())
        with self.assertRaises(TruncatedInput):
            load(data[:-3], '3.8')

    def test_payload_not_code(self):
        with self.assertRaises(MalformedInput):
            load(pyc_header('3.8') + dumps((1, 2)), '3.8')

    def test_trailing_bytes(self):
        with self.assertLogs('pyc.parser.loader', level = 'WARNING'):
            code = load(pyc_image(CodeFixture()) + b'\x00\x00', '3.8')

        self.assertEqual(code.name, '<module>')

    def test_malformed_instruction(self):
        fixture = CodeFixture(code = assemble(get_opcode_table('3.8'), ('LOAD_FAST', 0)))
        with self.assertRaises(MalformedInstruction):
            load(pyc_image(fixture), '3.8')

    def test_closure(self):
        cases = [
            (CodeFixture(), False),
            (CodeFixture(cellvars = ('a',)), True),
            (CodeFixture(freevars = ('b',)), True),
        ]

        for fixture, expected in cases:
            with self.subTest(fixture = fixture):
                self.assertEqual(load(pyc_image(fixture), '3.8').is_closure(), expected)

    def test_load_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'module.cpython-38.pyc'
            path.write_bytes(pyc_image(make_module()))

            self.assertEqual(load_file(path, '3.8').name, '<module>')
            self.assertEqual(load_from_file(str(path), True, '3.8').name, '<module>')

    def test_load_missing_file(self):
        with self.assertRaises(OSError):
            load_file('/nonexistent/module.pyc')


class TestLoadCode(unittest.TestCase):
    '''Test building from in-memory code handles'''

    def setUp(self):
        self.table = get_opcode_table('3.8')

    def test_handle(self):
        inner = fake_handle(self.table, co_name = 'inner', co_freevars = ('v',))
        handle = fake_handle(
            self.table,
            co_consts = (inner, None, 1.5, (1, 'a'), frozenset({2}), b'raw', 1j, Ellipsis, True),
            co_code = assemble(self.table, ('LOAD_CONST', 1), 'RETURN_VALUE'),
        )

        code = load_code(handle, '3.8')

        self.assertEqual(code.filename, 'fake.py')
        self.assertEqual([c.kind for c in code.constants], [
            Constant.Kind.CODE,
            Constant.Kind.NONE,
            Constant.Kind.FLOAT,
            Constant.Kind.TUPLE,
            Constant.Kind.FROZENSET,
            Constant.Kind.BYTES,
            Constant.Kind.COMPLEX,
            Constant.Kind.ELLIPSIS,
            Constant.Kind.BOOL,
        ])
        self.assertTrue(code.nested_code()[0].is_closure())

    def test_missing_posonly_before_38(self):
        handle = fake_handle(get_opcode_table('3.7'))
        del handle.co_posonlyargcount

        self.assertEqual(load_code(handle, '3.7').positional_only_count, 0)

        with self.assertRaises(MalformedInput):
            load_code(handle, '3.8')

    def test_bad_field(self):
        with self.assertRaises(MalformedInput):
            load_code(fake_handle(self.table, co_name = None), '3.8')

        with self.assertRaises(MalformedInput):
            load_code(fake_handle(self.table, co_names = ('a', 1)), '3.8')

    def test_unsupported_constant(self):
        with self.assertRaises(UnsupportedConstantKind) as cm:
            load_code(fake_handle(self.table, co_consts = (None, [1, 2])), '3.8')

        self.assertEqual(cm.exception.offset, 1)

    def test_integer_limit(self):
        cases = [
            ((1 << 64,), 0),
            ((None, 'a', (1, 1 << 64)), 2),
        ]

        for consts, index in cases:
            with self.subTest(index = index):
                with self.assertRaises(IntegerOverflow) as cm:
                    load_code(fake_handle(self.table, co_consts = consts), '3.8')

                self.assertEqual(cm.exception.offset, index)

    def test_odd_line_table(self):
        with self.assertRaises(MalformedInput) as cm:
            load_code(fake_handle(self.table, co_lnotab = b'\x02\x01\x02'), '3.8')

        self.assertEqual(cm.exception.offset, 2)

    def test_linetable_handle(self):
        table = get_opcode_table('3.10')
        handle = fake_handle(table, co_linetable = bytes([2, 1, 2, 1]), co_lnotab = b'\x02')

        code = load_code(handle, '3.10')

        self.assertEqual(code.line_table, bytes([2, 1, 2, 1]))
        self.assertEqual([i.source_line for i in code.instructions], [2, 3])

        del handle.co_linetable
        with self.assertRaises(MalformedInput):
            load_code(handle, '3.10')

    def test_unsupported_host(self):
        with mock.patch('pyc.parser.loader.host_version', return_value = '2.7'):
            with self.assertRaises(UnsupportedVersion):
                load_code(fake_handle(self.table))


class TestLoadSource(unittest.TestCase):
    '''Test compiling source through the compiler collaborator'''

    def setUp(self):
        self.table = get_opcode_table('3.8')

    def test_fake_compiler(self):
        calls = []

        def compiler(source, filename):
            calls.append((source, filename))
            return fake_handle(self.table, co_filename = filename)

        code = load_source('pass\n', 'demo.py', compiler, '3.8')

        self.assertEqual(calls, [('pass\n', 'demo.py')])
        self.assertEqual(code.filename, 'demo.py')

    def test_compile_error_propagates(self):
        def compiler(source, filename):
            raise CompileError('invalid syntax', filename, 1, 5)

        with self.assertRaises(CompileError) as cm:
            load_source('def (', 'bad.py', compiler, '3.8')

        self.assertEqual(str(cm.exception), 'bad.py:1:5: invalid syntax')

    def test_builtin_compile_error(self):
        with self.assertRaises(CompileError) as cm:
            compile_source('def (:\n', 'bad.py')

        self.assertEqual(cm.exception.filename, 'bad.py')
        self.assertEqual(cm.exception.lineno, 1)

    def test_unsupported_host_checked_first(self):
        with mock.patch('pyc.parser.loader.host_version', return_value = '2.7'), \
             mock.patch('pyc.parser.loader.compile_source') as compile_mock:
            with self.assertRaises(UnsupportedVersion):
                load_source('pass\n', 'demo.py')

        compile_mock.assert_not_called()

    def test_builtin_version_mismatch(self):
        other = '3.9' if host_version() == '3.8' else '3.8'

        with mock.patch('pyc.parser.loader.compile_source') as compile_mock:
            with self.assertRaises(UnsupportedVersion) as cm:
                load_source('x = 1\n', 'demo.py', version = other)

        self.assertIn(other, str(cm.exception))
        compile_mock.assert_not_called()

    def test_host_table(self):
        with mock.patch('pyc.parser.loader.host_version', return_value = '3.10'):
            self.assertEqual(host_opcode_table().version, '3.10')
            self.assertEqual(host_opcode_table('3.10').version, '3.10')

            with self.assertRaises(UnsupportedVersion):
                host_opcode_table('3.9')

        with mock.patch('pyc.parser.loader.host_version', return_value = '3.11'):
            with self.assertRaises(UnsupportedVersion) as cm:
                host_opcode_table()

        self.assertIn('Python 3.11', str(cm.exception))

    @unittest.skipUnless(HOST_SUPPORTED, f'no opcode table for the running Python {host_version()}')
    def test_builtin_compiler(self):
        handle = compile(COUNT_SOURCE, 'count.py', 'exec')
        func_handle = next(c for c in handle.co_consts if hasattr(c, 'co_code'))

        code = load_source(COUNT_SOURCE, 'count.py')
        func = code.nested_code()[0]

        self.assertEqual(code.filename, 'count.py')
        self.assertEqual(func.name, 'count')
        self.assertEqual(code.instructions[0].source_line, 1)
        self.assertEqual(func.instructions[0].source_line, 2)
        self.assertEqual(func.instructions[-1].mnemonic, 'RETURN_VALUE')

        loop = next(i for i in func.instructions if i.mnemonic == 'FOR_ITER')
        self.assertTrue(loop.is_jump_target)
        self.assertTrue(any(i.jump_target == loop.byte_offset for i in func.instructions if i.is_jump))

        # The running interpreter's dis module decodes the same bytecode
        for ours, theirs in ((code, handle), (func, func_handle)):
            with self.subTest(code = ours.name):
                self.assertEqual(
                    [(i.mnemonic, i.byte_offset, i.source_line, i.is_jump_target) for i in ours.instructions],
                    [(i.opname, i.offset, i.starts_line, i.is_jump_target) for i in dis.get_instructions(theirs)],
                )
                self.assertEqual(
                    [i.jump_target for i in ours.instructions if i.is_jump],
                    [i.argval for i in dis.get_instructions(theirs) if i.opcode in dis.hasjrel + dis.hasjabs],
                )
                self.assertEqual(ours.line_starts(), list(dis.findlinestarts(theirs)))

    @unittest.skipIf(HOST_SUPPORTED, f'the running Python {host_version()} has an opcode table')
    def test_builtin_compiler_unsupported_host(self):
        with self.assertRaises(UnsupportedVersion) as cm:
            load_source(COUNT_SOURCE, 'count.py')

        self.assertIn(f'Python {host_version()}', str(cm.exception))

        with self.assertRaises(UnsupportedVersion):
            load_code(compile(COUNT_SOURCE, 'count.py', 'exec'))

    def test_source_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / 'demo.py'
            path.write_text('x = 1\n', encoding = 'utf-8')

            seen = []

            def compiler(source, filename):
                seen.append(source)
                return fake_handle(self.table, co_filename = filename)

            code = load_source_file(path, compiler, '3.8')

            self.assertEqual(seen, ['x = 1\n'])
            self.assertEqual(code.filename, str(path))


if __name__ == '__main__':
    unittest.main()
