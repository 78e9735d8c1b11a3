"""Secret generation, initialization and rotation for rekey."""

from .confirmation import ClickPrompter, ConfirmationFlow, ConfirmationState, Prompter
from .generator import SecretGenerator
from .initializer import InitializationController, InitializationResult
from .model import DerivedToken, Secret, SecretClass, TokenRole, is_placeholder, mask
from .rotation import RotationController, RotationMode, RotationReport, StepStatus
from .tokens import TokenMinter

__all__ = [
    "ClickPrompter",
    "ConfirmationFlow",
    "ConfirmationState",
    "Prompter",
    "SecretGenerator",
    "InitializationController",
    "InitializationResult",
    "DerivedToken",
    "Secret",
    "SecretClass",
    "TokenRole",
    "is_placeholder",
    "mask",
    "RotationController",
    "RotationMode",
    "RotationReport",
    "StepStatus",
    "TokenMinter",
]
