"""Exception and warning types raised by cujac."""


class ConfigurationError(ValueError):
    """Raised when a generation or build step is configured inconsistently.

    Examples are a missing ``nvcc`` executable, saving sources before they
    were generated, or a global input dimension exceeding the domain size.
    """


class BuildError(RuntimeError):
    """Raised when the external CUDA compiler exits with a nonzero code.

    Parameters
    ----------
    returncode
        Exit status reported by the compiler process.
    command
        The command line that was executed.
    """

    def __init__(self, returncode: int, command: str = "") -> None:
        self.returncode = returncode
        self.command = command
        super().__init__(
            f"CUDA compilation failed with return code {returncode}."
        )


class EquationWarning(Warning):
    """Warning raised for recoverable issues in equation definitions."""
