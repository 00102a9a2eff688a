"""Modal screens for gitagrip."""

from .help_dialog import HelpDialog
from .info_dialog import RepoInfoDialog
from .output_dialog import OutputDialog

__all__ = [
    "HelpDialog",
    "OutputDialog",
    "RepoInfoDialog",
]
