import asyncio
import logging

logger = logging.getLogger("live_interview.session_controller")


class SessionController:
    """Owns the background tasks of one session and the event that stops them."""

    def __init__(self):
        self.stop_event = asyncio.Event()
        self.tasks: list[asyncio.Task] = []
        self.stop_reason = ""

    def create_task(self, coro, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self.tasks.append(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        try:
            self.tasks.remove(task)
        except ValueError:
            pass

    def request_stop(self, reason: str) -> None:
        if not self.stop_event.is_set():
            self.stop_reason = str(reason or "other")
            logger.info("Stop requested | reason=%s", self.stop_reason)
            self.stop_event.set()

    async def stop(self) -> None:
        if not self.stop_event.is_set():
            self.stop_event.set()

        current = asyncio.current_task()
        pending = [task for task in list(self.tasks) if task is not current]
        for task in pending:
            task.cancel()

        await asyncio.gather(*pending, return_exceptions=True)
