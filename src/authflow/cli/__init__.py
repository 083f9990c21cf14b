"""CLIモジュール"""

from authflow.cli.main import AuthflowCLI
from authflow.cli.parser import ArgumentParser, ParsedCommand, ValidationResult

__all__ = ["AuthflowCLI", "ArgumentParser", "ParsedCommand", "ValidationResult"]
