"""
tillpoint/errors.py
-------------------
Exceptions shared by the ledger, checkout and route layers.
"""


class ValidationError(ValueError):
    """
    Raised when input fails validation. Carries the same
    {field_name: error_message} dict the validators return, so the
    route layer can hand it straight back to the till.
    """

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = {'__all__': errors}
        self.errors = dict(errors)
        super().__init__('; '.join(f'{k}: {v}' for k, v in self.errors.items()))


class NotFound(LookupError):
    """A record addressed by id does not exist in the local ledger."""
