#!/usr/bin/env python3
"""
Print the disassembly of a .pyc or source file
"""

from common import *
from pathlib import Path
import argparse
import logging
import sys

from .disasm import Formatter, FormatterContext
from .errors import PycError
from .parser import load_file, load_source_file

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog = 'pycload', description = 'Load a .pyc file and print its code objects')
    parser.add_argument('path', help = 'Input .pyc file, or source file with --source')
    parser.add_argument('--source', action = 'store_true', help = 'Compile PATH as source text with the running interpreter')
    parser.add_argument('--target', help = 'Interpreter version of the input (e.g. 3.8) or "auto"')
    parser.add_argument('--config', help = 'Path to config file')
    parser.add_argument('--output', '-o', help = 'Write the listing to a file instead of stdout')
    parser.add_argument('--no-header', action = 'store_true', help = 'Only list instructions')
    parser.add_argument('--verbose', '-v', action = 'store_true', help = 'Enable debug logging')
    return parser


def main(argv: list[str] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level = logging.DEBUG if args.verbose else logging.WARNING,
        format = '%(levelname)s %(name)s: %(message)s',
    )

    # --config / --target feed the global config
    init_config(argv)

    input_path = Path(args.path)

    try:
        if args.source:
            # 'auto' needs a header, source always targets the host
            version = None if args.target == 'auto' else args.target
            code = load_source_file(input_path, version = version)
        else:
            code = load_file(input_path)

    except (PycError, OSError, UnicodeDecodeError) as e:
        print(f'error: {input_path}: {e}', file = sys.stderr)
        return 1

    formatter = Formatter(FormatterContext(show_header = not args.no_header))
    text = '\n'.join(formatter.format_code(code))

    if args.output:
        Path(args.output).write_text(text + '\n', encoding = 'utf-8')
        logger.info(f'Wrote {args.output}')
    else:
        print(text)

    return 0


if __name__ == '__main__':
    sys.exit(main())
