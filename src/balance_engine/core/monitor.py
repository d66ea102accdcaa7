"""Periodic balance monitoring with history and change alerts."""

import asyncio
import csv
import io
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from decimal import Decimal

from balance_engine.core.exceptions import UnknownEntityError
from balance_engine.core.models import (
    Alert,
    AlertDirection,
    EntityStats,
    HistoryEntry,
    QueryResult,
    WatchedEntity,
    WatchState,
    utcnow,
)
from balance_engine.core.scheduler import BatchScheduler

logger = logging.getLogger(__name__)

AlertSubscriber = Callable[[Alert], None]
CheckListener = Callable[[WatchedEntity, QueryResult], None]

CSV_COLUMNS = ["timestamp", "balance", "usd_value", "change_percent", "change_amount"]


class Monitor:
    """
    Re-queries watched addresses on a timer and raises change alerts.

    Every watched entity owns one timer task; removing the entity cancels the
    task. Successful checks are appended to a bounded per-entity history and
    compared with the previous entry. A change of at least the entity's
    threshold raises an alert that is delivered to every subscriber.

    Parameters
    ----------
    scheduler : BatchScheduler
        Scheduler performing the balance queries
    history_size : int
        History entries kept per entity
    alert_capacity : int
        Alerts kept across all entities
    default_interval_minutes : float
        Check interval used when ``watch`` is given none
    default_threshold_percent : float
        Alert threshold used when ``watch`` is given none
    sleep : Callable[[float], Awaitable[None]]
        Sleep coroutine driving the timers

    """

    def __init__(
        self,
        scheduler: BatchScheduler,
        history_size: int = 100,
        alert_capacity: int = 50,
        default_interval_minutes: float = 15.0,
        default_threshold_percent: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.scheduler = scheduler
        self.history_size = history_size
        self.default_interval_minutes = default_interval_minutes
        self.default_threshold_percent = default_threshold_percent
        self._sleep = sleep
        self._entities: dict[str, WatchedEntity] = {}
        self._history: dict[str, deque[HistoryEntry]] = {}
        self._alerts: deque[Alert] = deque(maxlen=alert_capacity)
        self._timers: dict[str, asyncio.Task] = {}
        self._subscribers: list[AlertSubscriber] = []
        self._check_listeners: list[CheckListener] = []

    async def watch(
        self,
        network: str,
        address: str,
        display_name: str | None = None,
        check_interval_minutes: float | None = None,
        alert_threshold_percent: float | None = None,
        check_immediately: bool = True,
    ) -> WatchedEntity:
        """
        Start watching an address.

        Watching an address that is already watched updates its options and
        restarts its timer; history is kept.

        Parameters
        ----------
        network : str
            Network code
        address : str
            Address to watch
        display_name : str | None
            Optional label used in alert messages
        check_interval_minutes : float | None
            Minutes between checks
        alert_threshold_percent : float | None
            Absolute percent change that raises an alert
        check_immediately : bool
            Perform the first check before returning

        Returns
        -------
        WatchedEntity
            The registered entity

        Raises
        ------
        UnsupportedNetworkError
            If the network is not in the catalogue

        """
        self.scheduler.providers.network(network)
        entity_id = f"{network}-{address}"

        entity = self._entities.get(entity_id)
        if entity is None:
            entity = WatchedEntity(
                id=entity_id,
                network=network,
                address=address,
                display_name=display_name,
                check_interval_minutes=check_interval_minutes or self.default_interval_minutes,
                alert_threshold_percent=(
                    alert_threshold_percent
                    if alert_threshold_percent is not None
                    else self.default_threshold_percent
                ),
            )
            self._entities[entity_id] = entity
            self._history[entity_id] = deque(maxlen=self.history_size)
            logger.info("Watching %s every %.1f min", entity.label, entity.check_interval_minutes)
        else:
            if display_name is not None:
                entity.display_name = display_name
            if check_interval_minutes is not None:
                entity.check_interval_minutes = check_interval_minutes
            if alert_threshold_percent is not None:
                entity.alert_threshold_percent = alert_threshold_percent

        if check_immediately:
            await self._check(entity)
        self._start_timer(entity)
        return entity

    def unwatch(self, entity_id: str) -> bool:
        """
        Stop watching an entity and discard its history.

        Alerts already raised for the entity are kept until cleared.

        Returns
        -------
        bool
            False if the entity was not watched

        """
        self._stop_timer(entity_id)
        entity = self._entities.pop(entity_id, None)
        self._history.pop(entity_id, None)
        if entity is None:
            return False
        logger.info("Stopped watching %s", entity.label)
        return True

    async def check_now(self, entity_id: str) -> QueryResult | None:
        """
        Check an entity immediately.

        Returns
        -------
        QueryResult | None
            The query result, or None if the entity was removed mid-check

        Raises
        ------
        UnknownEntityError
            If the entity is not watched

        """
        return await self._check(self._get(entity_id))

    def update_check_interval(self, entity_id: str, interval_minutes: float) -> WatchedEntity:
        """Change an entity's check interval and restart its timer."""
        entity = self._get(entity_id)
        entity.check_interval_minutes = interval_minutes
        self._start_timer(entity)
        return entity

    def update_alert_threshold(self, entity_id: str, threshold_percent: float) -> WatchedEntity:
        entity = self._get(entity_id)
        entity.alert_threshold_percent = threshold_percent
        return entity

    def get_entity(self, entity_id: str) -> WatchedEntity | None:
        return self._entities.get(entity_id)

    def list_watched(self) -> list[WatchedEntity]:
        return list(self._entities.values())

    def get_history(self, entity_id: str) -> list[HistoryEntry]:
        """History of an entity, oldest first (empty if not watched)."""
        return list(self._history.get(entity_id, ()))

    def get_alerts(self, unread_only: bool = False) -> list[Alert]:
        """
        Get raised alerts, oldest first.

        Parameters
        ----------
        unread_only : bool
            Only return alerts not yet acknowledged

        Returns
        -------
        list[Alert]
            Alerts in the ring buffer

        """
        if unread_only:
            return [alert for alert in self._alerts if not alert.acknowledged]
        return list(self._alerts)

    def acknowledge_alert(self, alert_id: str) -> bool:
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.acknowledged = True
                return True
        return False

    def clear_alerts(self, entity_id: str | None = None) -> int:
        """
        Drop alerts.

        Parameters
        ----------
        entity_id : str | None
            Only drop alerts of this entity

        Returns
        -------
        int
            Number of alerts dropped

        """
        before = len(self._alerts)
        if entity_id is None:
            self._alerts.clear()
        else:
            kept = [alert for alert in self._alerts if alert.entity_id != entity_id]
            self._alerts.clear()
            self._alerts.extend(kept)
        return before - len(self._alerts)

    def subscribe(self, callback: AlertSubscriber) -> Callable[[], None]:
        """
        Register an alert subscriber.

        Parameters
        ----------
        callback : AlertSubscriber
            Called synchronously with each new alert

        Returns
        -------
        Callable[[], None]
            Function removing the subscription

        """
        return _register(self._subscribers, callback)

    def subscribe_checks(self, callback: CheckListener) -> Callable[[], None]:
        """
        Register a listener for completed checks.

        Listeners see every check that finishes while its entity is still
        watched, failed ones included, after history and alerts are updated.

        Parameters
        ----------
        callback : CheckListener
            Called synchronously with the entity and its new result

        Returns
        -------
        Callable[[], None]
            Function removing the listener

        """
        return _register(self._check_listeners, callback)

    def get_entity_stats(self, entity_id: str) -> EntityStats | None:
        """
        Summarize an entity's history.

        Returns
        -------
        EntityStats | None
            Current, highest and lowest balance with total change, or None
            when there is no history

        """
        history = self.get_history(entity_id)
        if not history:
            return None

        balances = [entry.result.display_balance for entry in history]
        oldest, latest = balances[0], balances[-1]
        total_change = latest - oldest
        return EntityStats(
            current_balance=latest,
            highest_balance=max(balances),
            lowest_balance=min(balances),
            total_change=total_change,
            total_change_percent=float(total_change / oldest * 100) if oldest > 0 else 0.0,
            history_count=len(history),
            first_check=history[0].recorded_at,
            last_check=history[-1].recorded_at,
        )

    def export_history_csv(self, entity_id: str) -> str:
        """
        Export an entity's history as CSV.

        The output starts with ``Address``, ``Network`` and ``Name`` lines and a
        blank line, followed by a header row and one row per history entry.

        Returns
        -------
        str
            CSV text, empty when the entity is unknown or has no history

        """
        entity = self._entities.get(entity_id)
        history = self.get_history(entity_id)
        if entity is None or not history:
            return ""

        buffer = io.StringIO()
        buffer.write(f"Address: {entity.address}\n")
        buffer.write(f"Network: {entity.network}\n")
        buffer.write(f"Name: {entity.display_name or 'N/A'}\n")
        buffer.write("\n")

        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for entry in history:
            usd_value = entry.result.usd_value
            writer.writerow(
                [
                    entry.recorded_at.isoformat(),
                    str(entry.result.display_balance),
                    f"{usd_value:.2f}" if usd_value is not None else "N/A",
                    repr(entry.change_percent),
                    str(entry.change_amount),
                ]
            )
        return buffer.getvalue()

    async def close(self) -> None:
        """Cancel every timer."""
        timers = list(self._timers.values())
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()

    def _get(self, entity_id: str) -> WatchedEntity:
        entity = self._entities.get(entity_id)
        if entity is None:
            msg = f"Not watching {entity_id}"
            raise UnknownEntityError(msg)
        return entity

    def _start_timer(self, entity: WatchedEntity) -> None:
        self._stop_timer(entity.id)
        self._timers[entity.id] = asyncio.create_task(self._run_timer(entity.id), name=f"watch-{entity.id}")

    def _stop_timer(self, entity_id: str) -> None:
        task = self._timers.pop(entity_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run_timer(self, entity_id: str) -> None:
        while True:
            entity = self._entities.get(entity_id)
            if entity is None:
                return
            await self._sleep(entity.check_interval_minutes * 60)
            entity = self._entities.get(entity_id)
            if entity is None:
                return
            await self._check(entity)

    async def _check(self, entity: WatchedEntity) -> QueryResult | None:
        entity.state = WatchState.CHECKING
        try:
            result = await self.scheduler.query(entity.network, entity.address)
        finally:
            entity.state = WatchState.IDLE

        if self._entities.get(entity.id) is not entity:
            logger.debug("Discarding result for removed entity %s", entity.id)
            return None

        entity.last_result = result
        entity.last_checked_at = utcnow()
        if not result.ok:
            logger.info("Check failed for %s: %s", entity.label, result.error_message)
            self._notify_checked(entity, result)
            return result

        history = self._history[entity.id]
        previous = history[-1].result.display_balance if history else None
        change_amount = Decimal("0")
        change_percent = 0.0
        if previous is not None and previous > 0:
            change_amount = result.display_balance - previous
            change_percent = float(change_amount / previous * 100)

        entry = HistoryEntry(
            entity_id=entity.id,
            result=result,
            change_percent=change_percent,
            change_amount=change_amount,
        )
        history.append(entry)

        threshold = entity.alert_threshold_percent
        if change_percent and threshold > 0 and abs(change_percent) >= threshold:
            self._raise_alert(entity, entry, previous)
        self._notify_checked(entity, result)
        return result

    def _notify_checked(self, entity: WatchedEntity, result: QueryResult) -> None:
        for callback in list(self._check_listeners):
            try:
                callback(entity, result)
            except Exception:
                logger.exception("Check listener failed for %s", entity.id)

    def _raise_alert(self, entity: WatchedEntity, entry: HistoryEntry, previous: Decimal) -> None:
        increased = entry.change_percent > 0
        alert = Alert(
            id=f"alert-{uuid.uuid4().hex[:12]}",
            entity_id=entity.id,
            direction=AlertDirection.INCREASE if increased else AlertDirection.DECREASE,
            change_percent=entry.change_percent,
            change_amount=entry.change_amount,
            previous_balance=previous,
            new_balance=entry.result.display_balance,
            message=(
                f"{entity.label} balance {'increased' if increased else 'decreased'} "
                f"by {abs(entry.change_percent):.2f}% on {entity.network}"
            ),
        )
        self._alerts.append(alert)
        logger.warning(alert.message)

        for callback in list(self._subscribers):
            try:
                callback(alert)
            except Exception:
                logger.exception("Alert subscriber failed for %s", alert.id)


def _register(callbacks: list, callback: Callable) -> Callable[[], None]:
    callbacks.append(callback)

    def unsubscribe() -> None:
        if callback in callbacks:
            callbacks.remove(callback)

    return unsubscribe
