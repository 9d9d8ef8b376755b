"""
Error Taxonomy
==============

Exceptions raised by the core and translated into exit behaviour by the
command dispatchers.

- Environment errors (``StorageUnavailableError``) make the hook exit quietly.
- Validation errors are reported to the user with a specific message.
- ``ContextNotFoundError`` signals that a ticket has no stored context.
"""


class TicketMemoryError(Exception):
    """Base class for all ticket memory errors."""


class StorageUnavailableError(TicketMemoryError):
    """The home directory or the database could not be resolved or opened."""


class ContextNotFoundError(TicketMemoryError):
    """No context is stored for the requested ticket."""

    def __init__(self, ticket: str):
        super().__init__(f"No context found for {ticket}")
        self.ticket = ticket


class ValidationError(TicketMemoryError):
    """User supplied input that cannot be acted on."""


class InvalidCategoryError(ValidationError):
    def __init__(self, name: str):
        super().__init__(f"Invalid category: {name}")
        self.name = name


class InvalidSelectorError(ValidationError):
    def __init__(self, selector: str):
        super().__init__(f"Invalid number '{selector}'")
        self.selector = selector


class IndexOutOfRangeError(ValidationError):
    def __init__(self, index: int, count: int):
        super().__init__(f"#{index} not found (only {count} exist)")
        self.index = index
        self.count = count
