"""
Notifications for workflow events: friend requests, and requests to join a
group being sent, approved or denied.

Delivery is best-effort. `Notifier.dispatch` schedules delivery in the
background and returns immediately, so a slow or failing notifier never
holds up (or rolls back) the transaction that triggered it. Failures are
logged and dropped.

Services use `Notifier.dispatch_on_commit`, which holds the notification on
the session until its outermost transaction commits. If the transaction
rolls back, the notification is discarded.
"""

import abc
import asyncio
from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction
from structlog.typing import FilteringBoundLogger

from studyhub.config.managers import AsyncSessionManager
from studyhub.core.uuid import UUID
from studyhub.database.notification import Notification

ON_COMMIT_KEY = "studyhub.notifications"


def _send_on_commit(session: Session):
    for notifier, recipient, message, log in session.info.pop(ON_COMMIT_KEY, []):
        notifier.dispatch(recipient=recipient, message=message, log=log)


def _discard_on_rollback(session: Session, transaction: SessionTransaction):
    # Commit has already taken the queue; anything left was rolled back.
    if transaction.parent is None:
        session.info.pop(ON_COMMIT_KEY, None)


class Notifier(abc.ABC):
    """
    The base class for notifiers. Downstream must implement:

    - notify: deliver `message` to `recipient`. May raise; errors are
              caught and logged by `dispatch`.
    """

    name: str

    def __init__(self):
        self.pending: set[asyncio.Task] = set()

    @abc.abstractmethod
    async def notify(
        self, recipient: UUID, message: str, log: FilteringBoundLogger
    ) -> None:
        raise NotImplementedError

    async def _deliver(self, recipient: UUID, message: str, log: FilteringBoundLogger):
        try:
            await self.notify(recipient=recipient, message=message, log=log)
        except Exception as e:
            await log.awarning("notification.failed", error=str(e))
            return

        await log.adebug("notification.delivered")

    def dispatch(self, recipient: UUID, message: str, log: FilteringBoundLogger):
        """
        Schedule delivery of `message` to `recipient` without waiting for it.
        """
        log = log.bind(notifier=self.name, recipient=recipient)
        task = asyncio.create_task(self._deliver(recipient, message, log))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    def dispatch_on_commit(
        self,
        recipient: UUID,
        message: str,
        conn: AsyncSession,
        log: FilteringBoundLogger,
    ):
        """
        Dispatch `message` to `recipient` once the transaction on `conn`
        commits. Nothing is sent if it rolls back.
        """
        session = conn.sync_session

        if not event.contains(session, "after_commit", _send_on_commit):
            event.listen(session, "after_commit", _send_on_commit)
            event.listen(session, "after_transaction_end", _discard_on_rollback)

        session.info.setdefault(ON_COMMIT_KEY, []).append(
            (self, recipient, message, log)
        )

    async def flush(self):
        """
        Wait for all outstanding deliveries. Used at shutdown and in tests.
        """
        while self.pending:
            await asyncio.gather(*list(self.pending))


class LogNotifier(Notifier):
    """
    Writes notifications to the log only.
    """

    name = "log"

    async def notify(self, recipient: UUID, message: str, log: FilteringBoundLogger):
        await log.ainfo("notification.sent", message=message)


class DatabaseNotifier(Notifier):
    """
    Stores notifications so that the recipient can read them later. Each
    notification is written in its own transaction, separate from the one
    that triggered it.
    """

    name = "database"

    def __init__(self, manager: AsyncSessionManager):
        super().__init__()
        self.manager = manager

    async def notify(self, recipient: UUID, message: str, log: FilteringBoundLogger):
        async with self.manager.session() as conn:
            async with conn.begin():
                conn.add(
                    Notification(
                        recipient_user_id=recipient,
                        message=message,
                        created_at=datetime.now(timezone.utc),
                    )
                )


class MockNotifier(Notifier):
    """
    Records notifications in memory, used for testing. Set `fail` to make
    every delivery raise.
    """

    name = "mock"

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.sent: list[tuple[UUID, str]] = []

    async def notify(self, recipient: UUID, message: str, log: FilteringBoundLogger):
        if self.fail:
            raise RuntimeError("Mock notifier failure")

        self.sent.append((recipient, message))

    def messages_for(self, recipient: UUID) -> list[str]:
        return [message for to, message in self.sent if to == recipient]
