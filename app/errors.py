from __future__ import annotations


class DomainError(ValueError):
    """Base class for errors raised by the document and ledger services."""


class ForbiddenError(DomainError):
    pass


class NotFoundError(DomainError):
    pass


class ValidationError(DomainError):
    """Field-keyed validation failure.

    Keys are field paths such as ``status`` or ``lines.0.qty`` so several line
    errors can be reported together.
    """

    def __init__(self, errors: dict[str, str | list[str]], message: str | None = None) -> None:
        self.errors: dict[str, list[str]] = {
            field: [value] if isinstance(value, str) else list(value) for field, value in errors.items()
        }
        if message is None:
            message = next((msgs[0] for msgs in self.errors.values() if msgs), 'The given data was invalid.')
        super().__init__(message)

    @classmethod
    def single(cls, field: str, message: str) -> ValidationError:
        return cls({field: message})


class BusinessRuleError(ValidationError):
    """A hard stop that aborts the whole operation (over-invoicing, insufficient stock)."""
