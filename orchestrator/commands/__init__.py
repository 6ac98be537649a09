from . import models
from .models import CommandBase
from .registry import CommandRegistry, normalize_command_name, registry

__all__ = ["CommandBase", "CommandRegistry", "models", "normalize_command_name", "registry"]
