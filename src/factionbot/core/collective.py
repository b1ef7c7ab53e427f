"""Time-boxed collective actions: reaction polls and meeting RSVPs.

An action attaches a fixed, ordered set of reaction symbols to one message
and accepts one selection per user until its deadline. The registry is the
only process-wide mutable state in the bot. It is owned by the application
lifespan and injected into the bot, never imported as a singleton.

Lifecycle of an action:

    open()      store it, index it by message id, schedule closure
    deliver()   one reaction event -> (user, option index) -> on_select
    close()     exactly once: unsubscribe, cancel the timer, run on_close
    stop()      unsubscribe without finalizing (e.g. meeting cancelled)

Open actions are not persisted. After a restart the rows already written
remain, but the collector for an in-flight window is gone.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime

from factionbot.core.schedule_times import is_future
from factionbot.models.faction import ATTENDANCE_EMOJI, AttendanceStatus

logger = logging.getLogger(__name__)

NUMBER_SYMBOLS: tuple[str, ...] = (
    "1\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "2\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "3\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "4\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "5\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "6\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "7\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "8\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "9\N{VARIATION SELECTOR-16}\N{COMBINING ENCLOSING KEYCAP}",
    "\N{KEYCAP TEN}",
)

# Index order matches AttendanceStatus declaration order.
RSVP_STATUSES: tuple[AttendanceStatus, ...] = tuple(AttendanceStatus)
RSVP_SYMBOLS: tuple[str, ...] = tuple(ATTENDANCE_EMOJI[s] for s in RSVP_STATUSES)

MIN_OPTIONS = 2
MAX_OPTIONS = len(NUMBER_SYMBOLS)

# (actor_id, option_index, previous_index) -> accepted
SelectHandler = Callable[[int, int, int | None], Awaitable[bool]]
CloseHandler = Callable[["CollectiveAction"], Awaitable[None]]


def symbols_for(option_count: int) -> tuple[str, ...]:
    """Return the reaction symbols for a poll with *option_count* options, in order."""
    if not MIN_OPTIONS <= option_count <= MAX_OPTIONS:
        raise ValueError(f"polls need {MIN_OPTIONS}-{MAX_OPTIONS} options, got {option_count}")
    return NUMBER_SYMBOLS[:option_count]


@dataclasses.dataclass
class CollectiveAction:
    """One open reaction window bound to a single message."""

    action_id: str
    kind: str
    message_id: int
    channel_id: int
    symbols: tuple[str, ...]
    deadline: datetime
    on_select: SelectHandler
    on_close: CloseHandler
    selections: dict[int, int] = dataclasses.field(default_factory=dict)
    closed: bool = False
    lock: asyncio.Lock = dataclasses.field(default_factory=asyncio.Lock)

    def option_index(self, symbol: str) -> int | None:
        try:
            return self.symbols.index(symbol)
        except ValueError:
            return None


@dataclasses.dataclass(frozen=True)
class OptionResult:
    index: int
    label: str
    symbol: str
    votes: int
    percent: int


@dataclasses.dataclass(frozen=True)
class PollResults:
    options: list[OptionResult]
    total_votes: int
    winner_index: int | None

    @property
    def winner(self) -> OptionResult | None:
        if self.winner_index is None:
            return None
        return self.options[self.winner_index]


def compute_poll_results(
    labels: Sequence[str],
    counts: Mapping[int, int],
    symbols: Sequence[str] | None = None,
) -> PollResults:
    """Tally final votes per option.

    Percentages are whole numbers against the total; with no votes every
    option reports 0%. The winner is the option with the most votes, ties
    going to the option declared first. With no votes there is no winner.
    """
    symbols = symbols or NUMBER_SYMBOLS[: len(labels)]
    total = sum(counts.get(i, 0) for i in range(len(labels)))
    options: list[OptionResult] = []
    for i, label in enumerate(labels):
        votes = counts.get(i, 0)
        percent = round(votes / total * 100) if total else 0
        options.append(
            OptionResult(index=i, label=label, symbol=symbols[i], votes=votes, percent=percent)
        )

    winner_index: int | None = None
    if total:
        best = max(o.votes for o in options)
        winner_index = next(o.index for o in options if o.votes == best)

    return PollResults(options=options, total_votes=total, winner_index=winner_index)


class CollectiveActionRegistry:
    """Live set of open collective actions, keyed by action id and message id.

    When given an APScheduler scheduler, ``open`` arms a one-shot
    ``DateTrigger`` job that closes the action at its deadline. Without one
    (tests, or a bot started without a scheduler) closure has to be driven
    by calling ``close`` directly.
    """

    def __init__(self, scheduler: object | None = None) -> None:
        self.scheduler = scheduler
        self._actions: dict[str, CollectiveAction] = {}
        self._by_message: dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._actions)

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._actions

    @staticmethod
    def job_id(action_id: str) -> str:
        return f"collective-close:{action_id}"

    def get(self, action_id: str) -> CollectiveAction | None:
        return self._actions.get(action_id)

    def for_message(self, message_id: int) -> CollectiveAction | None:
        action_id = self._by_message.get(message_id)
        return self._actions.get(action_id) if action_id else None

    def open(self, action: CollectiveAction) -> None:
        """Start collecting reactions for *action* and schedule its closure."""
        if action.action_id in self._actions:
            raise ValueError(f"action {action.action_id} is already open")
        self._actions[action.action_id] = action
        self._by_message[action.message_id] = action.action_id

        if self.scheduler is not None:
            from apscheduler.triggers.date import DateTrigger

            self.scheduler.add_job(  # type: ignore[attr-defined]
                self.close,
                trigger=DateTrigger(run_date=action.deadline),
                args=[action.action_id],
                id=self.job_id(action.action_id),
                name=f"Close {action.kind} {action.action_id}",
                replace_existing=True,
                misfire_grace_time=None,
            )
        logger.info(
            "collective_action_opened kind=%s id=%s options=%d deadline=%s",
            action.kind,
            action.action_id,
            len(action.symbols),
            action.deadline.isoformat(),
        )

    async def deliver(
        self,
        message_id: int,
        actor_id: int,
        symbol: str,
        *,
        actor_is_bot: bool = False,
        now: datetime | None = None,
    ) -> bool:
        """Route one reaction-add event. Returns True if it was recorded.

        Events from bots, for unknown messages, with symbols outside the
        action's option set, or after the deadline are ignored. Events for
        one action are processed one at a time so the stored selection and
        the visible reactions can't drift apart.
        """
        if actor_is_bot:
            return False
        action = self.for_message(message_id)
        if action is None:
            return False
        index = action.option_index(symbol)
        if index is None:
            return False

        async with action.lock:
            if action.closed or not is_future(action.deadline, now):
                return False
            previous = action.selections.get(actor_id)
            accepted = await action.on_select(actor_id, index, previous)
            if accepted:
                action.selections[actor_id] = index
            return accepted

    def _detach(self, action_id: str) -> CollectiveAction | None:
        action = self._actions.pop(action_id, None)
        if action is None:
            return None
        self._by_message.pop(action.message_id, None)
        action.closed = True
        if self.scheduler is not None:
            from apscheduler.jobstores.base import JobLookupError

            try:
                self.scheduler.remove_job(self.job_id(action_id))  # type: ignore[attr-defined]
            except JobLookupError:
                # The job already fired; that's what called close().
                pass
        return action

    async def close(self, action_id: str) -> bool:
        """Finalize an action. Runs ``on_close`` at most once per action."""
        action = self._detach(action_id)
        if action is None:
            return False
        async with action.lock:
            try:
                await action.on_close(action)
            except Exception:  # Last-resort handler: scheduler jobs have no caller
                logger.exception(
                    "collective_action_close_failed kind=%s id=%s",
                    action.kind,
                    action_id,
                )
        logger.info("collective_action_closed kind=%s id=%s", action.kind, action_id)
        return True

    def stop(self, action_id: str) -> bool:
        """Stop collecting without finalizing. Returns False if it wasn't open."""
        action = self._detach(action_id)
        if action is None:
            return False
        logger.info("collective_action_stopped kind=%s id=%s", action.kind, action_id)
        return True

    def shutdown(self) -> None:
        """Drop every open action and cancel their timers."""
        for action_id in list(self._actions):
            self._detach(action_id)
