class DeployToolsError(Exception):
    """Base class for failures the CLI reports and exits non-zero on."""


class MissingEnvironmentError(DeployToolsError):
    """A required environment variable is unset or empty."""


class BootstrapError(DeployToolsError):
    """The bootstrap could not finish a phase."""


class StackOutputError(DeployToolsError):
    """A stack, or an output the caller depends on, does not exist."""
