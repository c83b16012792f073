"""Error taxonomy shared by the editor, generator, renderer and HTTP surface."""


class BizsiteError(Exception):
    """Base class for every error raised by bizsite."""


class ConfigurationError(BizsiteError):
    """Fatal: unknown business type, missing CLI flag, broken template set."""


class ValidationError(BizsiteError):
    """A section payload was rejected. Nothing was persisted."""

    def __init__(self, section: str, problems: list[str]):
        self.section = section
        self.problems = list(problems)
        super().__init__(f"{section}: " + "; ".join(self.problems))


class NotFoundError(BizsiteError):
    """The requested profile (or page) does not exist."""


class AuthorizationError(BizsiteError):
    """No signed-in identity, or the identity does not own the profile."""


class TransientIOError(BizsiteError):
    """A persistence or blob-store call failed. The user may retry."""


class GenerationError(BizsiteError):
    """Fatal I/O failure while writing a site (directory or template read)."""


class DegradedRenderError(BizsiteError):
    """Non-fatal render problem. Logged, replaced by placeholder content."""
