"""Errors raised by model management."""


class ModelDockError(Exception):
    """Base error for model management."""
    pass


class EmptySelectionError(ModelDockError):
    """No files were selected."""
    pass


class InvalidFormatError(ModelDockError):
    """File or URL is not a GGUF model."""
    pass


class FileReadError(ModelDockError):
    """Reading a selected file failed."""
    pass


class DuplicateModelError(ModelDockError):
    """A model with the same URL or file name is already known."""
    pass


class ModelNotCachedError(ModelDockError):
    """Load attempted before the model was fully downloaded."""
    pass


class ModelVerificationError(ModelDockError):
    """A remote model URL could not be verified."""
    pass
