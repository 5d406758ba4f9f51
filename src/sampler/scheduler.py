"""
Circular sampling scheduler.

Walks a snapshot of the catalog round-robin, one game at a time, until the
duration elapses or a stop is requested. Each reading is classified against
the game's prior history before it is appended to the sample log.
"""

import threading
import time
from collections.abc import Callable

import structlog

from src.anomaly.detector import AnomalyDetector
from src.catalog.database import CatalogDatabase
from src.catalog.models import GameRef
from src.core.errors import ClassificationError, SchedulerBusyError, StorageError
from src.core.retry import fetch_with_retry

from .lock import RunLock
from .models import RunSummary, SamplerConfig, SchedulerState
from .scraper import CcuScraper

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int, str, int, int], None]


class CircularScheduler:
    """Round-robin CCU sampler with cooperative cancellation"""

    def __init__(
        self,
        catalog: CatalogDatabase,
        scraper: CcuScraper,
        config: SamplerConfig,
        detector: AnomalyDetector | None = None,
        run_lock: RunLock | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.catalog = catalog
        self.scraper = scraper
        self.config = config
        self.detector = detector
        self.run_lock = run_lock
        self._clock = clock
        self._wall_clock = wall_clock

        self._state = SchedulerState.IDLE
        self._state_lock = threading.RLock()
        self._stop_event = threading.Event()

    @property
    def state(self) -> SchedulerState:
        return self._state

    def stop(self):
        """Ask the active run to finish after the current item"""
        with self._state_lock:
            if self._state == SchedulerState.RUNNING:
                self._state = SchedulerState.STOPPING
                logger.info("Stop requested")
        self._stop_event.set()

    def run(
        self,
        duration_seconds: float,
        on_progress: ProgressCallback | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> RunSummary:
        """Sample for at most `duration_seconds`

        Raises:
            SchedulerBusyError: if a run is already active here or elsewhere
        """
        if duration_seconds < 0:
            raise ValueError(f"duration_seconds must be >= 0, got {duration_seconds}")
        return self._run(duration_seconds, on_progress, should_stop)

    def run_until_stopped(
        self,
        on_progress: ProgressCallback | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> RunSummary:
        """Sample until `stop()` or `should_stop()`"""
        return self._run(None, on_progress, should_stop)

    def _start(self):
        with self._state_lock:
            if self._state != SchedulerState.IDLE:
                raise SchedulerBusyError(f"Scheduler is {self._state.value}")
            self._stop_event.clear()
            self._state = SchedulerState.RUNNING

        if self.run_lock is not None and not self.run_lock.acquire():
            with self._state_lock:
                self._state = SchedulerState.IDLE
            raise SchedulerBusyError(f"Run lock {self.run_lock.name} is held by another sampler")

    def _finish(self):
        if self.run_lock is not None:
            self.run_lock.release()
        with self._state_lock:
            self._state = SchedulerState.IDLE

    def _should_continue(self, deadline: float | None, should_stop) -> bool:
        if self._stop_event.is_set():
            logger.info("Sampling stopped on request")
            return False
        if should_stop is not None and should_stop():
            logger.info("Sampling stopped by caller")
            return False
        if deadline is not None and self._clock() >= deadline:
            logger.info("Duration limit reached")
            return False
        return True

    def _run(
        self,
        duration_seconds: float | None,
        on_progress: ProgressCallback | None,
        should_stop: Callable[[], bool] | None,
    ) -> RunSummary:
        self._start()

        summary = RunSummary()
        start = self._clock()
        processing_seconds = 0.0

        try:
            try:
                games = self._load_games(summary)
                if not games:
                    return summary

                summary.total_games = len(games)
                deadline = start + duration_seconds if duration_seconds is not None else None

                logger.info(
                    "Starting circular sampling",
                    total_games=summary.total_games,
                    duration=duration_seconds if duration_seconds is not None else "indefinite",
                )

                index = 0
                while self._should_continue(deadline, should_stop):
                    game = games[index]

                    item_start = self._clock()
                    self._process_game(game, summary)
                    processing_seconds += self._clock() - item_start

                    if on_progress is not None:
                        on_progress(
                            index + 1,
                            summary.total_games,
                            game.title,
                            summary.successful_samples,
                            summary.failed_samples,
                        )

                    index = (index + 1) % summary.total_games
                    if index == 0:
                        summary.total_cycles += 1
                        logger.info(
                            "Completed catalog cycle",
                            cycle=summary.total_cycles,
                            successful=summary.successful_samples,
                            failed=summary.failed_samples,
                        )

                    if self.run_lock is not None and not self.run_lock.refresh():
                        summary.add_error("Run lock lost")
                        break

                    self._pace(deadline)

            except KeyboardInterrupt:
                logger.info("Received interrupt signal, stopping sampler")

            return summary

        finally:
            summary.elapsed_seconds = self._clock() - start
            items = summary.items_processed
            summary.average_time_per_game_ms = (
                processing_seconds * 1000 / items if items > 0 else 0.0
            )
            self._finish()

            logger.info(
                "Sampling finished",
                total_games=summary.total_games,
                successful=summary.successful_samples,
                failed=summary.failed_samples,
                anomalies=summary.anomalies_detected,
                cycles=summary.total_cycles,
                avg_ms_per_game=round(summary.average_time_per_game_ms, 1),
                elapsed_sec=round(summary.elapsed_seconds, 1),
            )

    def _load_games(self, summary: RunSummary) -> list[GameRef]:
        try:
            games = self.catalog.list_games()
        except StorageError as e:
            logger.error("Failed to load catalog", error=str(e))
            summary.add_error(f"Failed to load catalog: {e}")
            return []

        if not games:
            logger.warning("No games in catalog")
            summary.add_error("No games in catalog")
        return games

    def _pace(self, deadline: float | None):
        """Interruptible wait of min(pace, remaining)"""
        wait = self.config.pace_delay_seconds
        if deadline is not None:
            wait = min(wait, max(0.0, deadline - self._clock()))
        if wait > 0:
            self._stop_event.wait(wait)

    def _process_game(self, game: GameRef, summary: RunSummary):
        """Scrape, classify and store one reading; failures stay inside the item"""
        try:
            ccu = fetch_with_retry(
                lambda: self.scraper.scrape_current_ccu(game),
                max_attempts=self.config.scrape_max_attempts,
                base_backoff_seconds=self.config.scrape_backoff_seconds,
                description=f"scrape game {game.id}",
            )
        except Exception as e:
            summary.failed_samples += 1
            summary.add_error(f"Error processing game {game.title} (ID: {game.id}): {e}")
            logger.error("Error processing game", game_id=game.id, title=game.title, error=str(e))
            return

        if ccu is None:
            summary.failed_samples += 1
            summary.add_error(f"Failed to read CCU for game {game.title} (ID: {game.id})")
            return

        if self.detector is not None:
            try:
                anomaly = self.detector.classify_and_record(game.id, ccu)
                if anomaly is not None:
                    summary.anomalies_detected += 1
            except (ClassificationError, StorageError) as e:
                logger.warning("Anomaly check failed", game_id=game.id, error=str(e))

        try:
            self.catalog.append_sample(game.id, int(self._wall_clock() * 1000), ccu)
        except StorageError as e:
            summary.failed_samples += 1
            summary.add_error(
                f"Failed to store sample for game {game.title} (ID: {game.id}): {e}"
            )
            logger.error("Failed to store sample", game_id=game.id, error=str(e))
            return

        summary.successful_samples += 1
        logger.debug("Sample stored", game_id=game.id, title=game.title, ccu=ccu)
