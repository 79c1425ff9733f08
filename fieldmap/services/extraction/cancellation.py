import asyncio


class CancellationToken:
    """Cooperative cancellation for an extraction batch.

    In-flight inference is allowed to finish; the orchestrator checks the
    token before persisting anything.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
