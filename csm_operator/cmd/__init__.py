"""
This module holds all of the command classes for the csm-operator entrypoint
"""

# Local
from .base import CmdBase
from .run_operator_cmd import RunOperatorCmd
