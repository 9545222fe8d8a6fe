from .context import SubmitContext, Submission
from .errors import FormConfigurationError, PersistenceError, RecordNotFound
from .form import Form
from .hooks import HookOutcome, HookRegistry
from .messages import MessageBag
from .registry import FieldRegistry
from .values import MISSING

__all__ = [
    "FieldRegistry",
    "Form",
    "FormConfigurationError",
    "HookOutcome",
    "HookRegistry",
    "MISSING",
    "MessageBag",
    "PersistenceError",
    "RecordNotFound",
    "SubmitContext",
    "Submission",
]
