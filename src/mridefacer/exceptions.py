"""Exceptions raised while defacing a batch of images."""


class MridefacerError(RuntimeError):
    """Base exception for all mridefacer errors."""


class ConfigurationError(MridefacerError):
    """Raised when the environment, data files or inputs are unusable."""


class PipelineError(MridefacerError):
    """Raised when a processing step produced no valid output."""


class AnnexError(MridefacerError):
    """Raised when an expected artifact cannot be registered with git-annex."""
