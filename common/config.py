'''Global configuration system supporting JSON5 files and command-line overrides'''

import json5
import argparse
import logging
from pathlib import Path
from typing import Any

__all__ = (
    'Config',
    'get_config',
    'default_target_version',
    'default_max_int_bits',
    'default_max_marshal_depth',
    'default_opcode_table_dir',
    'default_indent',
    'init_config',
)

logger = logging.getLogger(__name__)


class Config:
    '''Global configuration singleton'''

    _instance = None
    _initialized = False

    # Default configuration values
    _defaults = {
        'target_version'    : '3.8',
        'max_int_bits'      : 64,
        'max_marshal_depth' : 200,
        'opcode_table_dir'  : None,
        'listing_indent'    : '    ',
    }

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config = self._defaults.copy()
            self._cli_overrides = {}
            self._initialized = True

    def load_file(self, filepath: str | Path) -> bool:
        '''Load configuration from JSON5 file'''
        filepath = Path(filepath)
        if not filepath.exists():
            return False

        try:
            with open(filepath, 'r', encoding = 'utf-8') as f:
                data = json5.loads(f.read())

        except (OSError, ValueError) as e:
            logger.warning(f'Failed to load config from {filepath}: {e}')
            return False

        if not isinstance(data, dict):
            logger.warning(f'Ignoring config {filepath}: top level is not an object')
            return False

        self._config.update(data)
        logger.debug(f'Loaded config from {filepath}')
        return True

    def load_defaults(self):
        '''Load default configuration files'''
        # Load project config
        project_config = Path(__file__).parent.parent / 'config.json5'
        self.load_file(project_config)

    def parse_args(self, args: list[str] = None):
        '''Parse command-line arguments and override config'''
        parser = argparse.ArgumentParser(
            description = 'pycloader configuration',
            add_help = False
        )

        parser.add_argument(
            '--config',
            type = str,
            help = 'Path to config file'
        )

        parser.add_argument(
            '--target',
            type = str,
            help = 'Target interpreter version (e.g. 3.8) or "auto"'
        )

        # Parse known args, ignore unknown
        parsed, _ = parser.parse_known_args(args)

        # Load config file if specified
        if parsed.config:
            self.load_file(parsed.config)

        # Apply command-line overrides
        if parsed.target:
            self._cli_overrides['target_version'] = parsed.target

    def get(self, key: str, default: Any = None) -> Any:
        '''Get configuration value'''
        # CLI overrides have highest priority
        if key in self._cli_overrides:
            return self._cli_overrides[key]

        # Then config file values
        if key in self._config:
            return self._config[key]

        # Finally default value
        return default

    def set(self, key: str, value: Any):
        '''Set configuration value at runtime'''
        self._config[key] = value

    def reset(self):
        '''Drop file values and overrides, back to built-in defaults'''
        self._config = self._defaults.copy()
        self._cli_overrides = {}

    @property
    def target_version(self) -> str:
        '''Get the interpreter version whose bytecode is expected'''
        return str(self.get('target_version'))

    @property
    def max_int_bits(self) -> int:
        '''Get the integer constant width limit (0 means unlimited)'''
        return int(self.get('max_int_bits') or 0)

    @property
    def max_marshal_depth(self) -> int:
        '''Get maximum nesting depth accepted by the marshal decoder'''
        return int(self.get('max_marshal_depth'))

    @property
    def opcode_table_dir(self) -> Path | None:
        '''Get the optional directory holding extra opcode tables'''
        path = self.get('opcode_table_dir')
        return Path(path) if path else None


# Global config instance
_config = Config()


def get_config() -> Config:
    '''Get global config instance'''
    return _config


def default_target_version() -> str:
    '''Get default target interpreter version'''
    return _config.target_version


def default_max_int_bits() -> int:
    '''Get default integer width limit'''
    return _config.max_int_bits


def default_max_marshal_depth() -> int:
    '''Get default marshal nesting limit'''
    return _config.max_marshal_depth


def default_opcode_table_dir() -> Path | None:
    '''Get extra opcode table directory'''
    return _config.opcode_table_dir


def default_indent() -> str:
    '''Get default indent'''
    return str(_config.get('listing_indent', '    '))


def init_config(args: list[str] = None):
    '''Initialize configuration system'''
    _config.load_defaults()
    if args is not None:
        _config.parse_args(args)


# Auto-load defaults on import
_config.load_defaults()
