"""CPython .pyc code object loader"""

from .errors import *
from .parser import *
from .disasm import *
