from .command_builder import CommandBuilder, CommandSpec
from .process_runner import ProcessResult, ProcessRunner
from .units import parse_whole_units, to_minimal_units

__all__ = [
    "CommandBuilder",
    "CommandSpec",
    "ProcessResult",
    "ProcessRunner",
    "parse_whole_units",
    "to_minimal_units",
]
