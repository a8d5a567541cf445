from .executor import Executor
from .interface import BaseInterface

__all__ = ("Executor", "BaseInterface")
