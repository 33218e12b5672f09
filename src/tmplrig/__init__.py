"""tmplrig – end-to-end test harness for web project templates"""

__version__ = "0.1.0"

from .app_process import LiveApplication
from .baseline import (
    DEFAULT_IGNORE,
    IgnoreRules,
    TemplateBaseline,
    load_baselines,
    sanitize_args,
    verify_file_set,
)
from .config import HarnessConfig, load_config
from .context import HarnessContext
from .driver import AutomationDriver, DriverLauncher
from .errors import CleanupError, HarnessError, ProcessFailedError, ReadinessTimeout, SetupError
from .installer import TemplatePackageInstaller
from .logs import output_for, setup_logging
from .npm import PackageRestorer
from .process import ProcessRun
from .project import Project, ProjectFactory
from .retry import RetryOutcome, retry, retry_async

__all__ = [
    "__version__",
    "AutomationDriver",
    "CleanupError",
    "DEFAULT_IGNORE",
    "DriverLauncher",
    "HarnessConfig",
    "HarnessContext",
    "HarnessError",
    "IgnoreRules",
    "LiveApplication",
    "PackageRestorer",
    "ProcessFailedError",
    "ProcessRun",
    "Project",
    "ProjectFactory",
    "ReadinessTimeout",
    "RetryOutcome",
    "SetupError",
    "TemplateBaseline",
    "TemplatePackageInstaller",
    "load_baselines",
    "load_config",
    "output_for",
    "retry",
    "retry_async",
    "sanitize_args",
    "setup_logging",
    "verify_file_set",
]
