from .config import *
from .enum import *
from .strict_base import *
