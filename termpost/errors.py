"""Error taxonomy shared by the session, the store and the transport."""


class TermpostError(Exception):
    """Base class for every error the session folds into visible state."""


class TransportError(TermpostError):
    """Network, DNS, TLS or timeout failure while executing a request."""


class ParseError(TermpostError):
    """Persisted JSON could not be parsed or validated."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class ValidationError(TermpostError):
    """A request was rejected locally before dispatch."""


class StoreError(TermpostError):
    """A collection/history store operation failed."""


class NotFoundError(StoreError):
    def __init__(self, kind: str, item_id: str):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind} not found: {item_id}")


class StoreIOError(StoreError):
    """Reading or writing a store file failed."""


class FilterError(TermpostError):
    """A response filter query was malformed or could not run."""


class ClipboardError(TermpostError):
    """No clipboard tool accepted the text."""
