"""Exception hierarchy for inbox-triage."""


class TriageError(Exception):
    """Base class for all inbox-triage errors."""


class ClassifierError(TriageError):
    """The classification service failed to produce a usable suggestion."""


class ClassifierTimeoutError(ClassifierError):
    """The classification request exceeded its deadline."""


class MalformedResponseError(ClassifierError):
    """The classification service answered with something we cannot parse."""


class StoreError(TriageError):
    """Base class for triage store errors."""


class DuplicateSourceError(StoreError):
    """A pending item already references the source path."""

    def __init__(self, source_path: str) -> None:
        super().__init__(f"Pending triage item already exists for {source_path}")
        self.source_path = source_path


class InvalidTransitionError(StoreError):
    """A status change would violate the triage lifecycle."""

    def __init__(self, item_id: str, current: str, requested: str) -> None:
        super().__init__(f"Cannot move item {item_id} from {current} to {requested}")
        self.item_id = item_id
        self.current = current
        self.requested = requested
