"""Turning proxy query logging on and off and tailing the result.

``LoggingToggleController.set_enabled`` is the single entry point presentation
code uses. Enabling rewrites the proxy's ``[query_log]`` table when needed,
brings the proxy service up so it picks the change up, and starts a tail of the
log file on a background thread. Disabling stops the tail and takes the log
file back out of the proxy configuration.

Waits after install/start/restart are fixed durations. The proxy gives no
readiness signal, so on a slow machine the service may still be coming up when
the wait ends; callers that need certainty should poll the service state.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from dnsquerylog.config import DEFAULT_LOG_FILE_NAME, Settings, save_settings
from dnsquerylog.errors import (
    BusyError,
    ConfigPersistError,
    FileAccessError,
    ServiceOperationError,
)
from dnsquerylog.proxy_config import LTSV, ProxyConfig, ProxyConfigStore, QueryLogConfig
from dnsquerylog.service import ProxyService, ServiceLifecycleClient, ServiceState, service_state
from dnsquerylog.sink import DeliverySink
from dnsquerylog.tailer import POLL_INTERVAL, FileTailer, TailStream

logger = logging.getLogger("dnsquerylog.controller")

STOP_GRACE = 1.0  # seconds allowed for an in-flight read after the stop signal

# Errors a config store may raise on load/save (I/O, TOML decode, TOML encode)
_STORE_ERRORS = (OSError, ValueError, TypeError)


class LoggingToggleController:
    def __init__(
        self,
        store: ProxyConfigStore,
        client: ServiceLifecycleClient,
        sink: DeliverySink,
        query_log_file: str,
        install_timeout: float = 4.0,
        start_timeout: float = 2.5,
        restart_timeout: float = 5.0,
        poll_interval: float = POLL_INTERVAL,
        sleep: Callable[[float], object] = time.sleep,
        tailer_factory: Callable[[], FileTailer] | None = None,
        on_path_change: Callable[[str], None] | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.sink = sink
        self.install_timeout = install_timeout
        self.start_timeout = start_timeout
        self.restart_timeout = restart_timeout
        self.poll_interval = poll_interval
        self._query_log_file = query_log_file
        self._sleep = sleep
        self._tailer_factory = tailer_factory or (lambda: FileTailer(poll_interval=poll_interval))
        self._on_path_change = on_path_change

        self._enabled = False
        self._in_flight = threading.Lock()
        self._tailer: FileTailer | None = None
        self._worker: threading.Thread | None = None

    @classmethod
    def from_settings(cls, settings: Settings, sink: DeliverySink, **kwargs) -> LoggingToggleController:
        """Build a controller for the proxy described by *settings*."""

        def save_path(path: str) -> None:
            settings.query_log_file = path
            save_settings(settings)

        return cls(
            store=ProxyConfigStore(settings.proxy_config_file),
            client=ProxyService(
                settings.proxy_binary, settings.proxy_config_file, settings.service_name
            ),
            sink=sink,
            query_log_file=settings.query_log_file,
            install_timeout=settings.install_timeout,
            start_timeout=settings.start_timeout,
            restart_timeout=settings.restart_timeout,
            poll_interval=settings.poll_interval,
            on_path_change=save_path,
            **kwargs,
        )

    @property
    def enabled(self) -> bool:
        """Last successfully applied logging state.

        Drops back to False on its own when the background tail ends on an
        error, e.g. the log file was deleted.
        """
        return self._enabled

    @property
    def tailing(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def query_log_file(self) -> str:
        return self._query_log_file

    def change_log_directory(self, folder: Path | str) -> str:
        """Point the query log at *folder*; applied on the next enable."""
        path = str(Path(folder) / DEFAULT_LOG_FILE_NAME)
        if path == self._query_log_file:
            return path
        self._query_log_file = path
        logger.info("Query log file changed to %s", path)
        if self._on_path_change is not None:
            self._on_path_change(path)
        return path

    def set_enabled(self, enabled: bool) -> bool:
        """Apply the requested logging state and return it.

        Raises BusyError if another call is still in progress, and
        ConfigPersistError, ServiceOperationError or FileAccessError when
        enabling fails. Disabling only fails with BusyError; service and
        configuration problems on that path are logged and skipped.
        """
        if not self._in_flight.acquire(blocking=False):
            raise BusyError("A query log toggle is already in progress")
        try:
            if enabled:
                self._enable()
            else:
                self._disable()
            return self._enabled
        finally:
            self._in_flight.release()

    def clear(self) -> None:
        """Discard entries delivered so far."""
        self.sink.clear()

    def close(self) -> None:
        if self._enabled or self._tailer is not None:
            self.set_enabled(False)

    # -- enable ------------------------------------------------------------

    def _enable(self) -> None:
        path = self._query_log_file
        try:
            config = self.store.load()
        except _STORE_ERRORS as e:
            logger.error("Failed to read proxy configuration: %s", e)
            raise ConfigPersistError(f"Failed to read proxy configuration: {e}") from e
        if config is None:
            config = ProxyConfig()

        query_log = config.get_query_log()
        created = query_log is None
        if query_log is None:
            query_log = QueryLogConfig(file_path=path, format=LTSV)

        needs_save = created or query_log.format != LTSV or query_log.file_path != path
        if needs_save:
            query_log.file_path = path
            query_log.format = LTSV
            config.set_query_log(query_log)
            try:
                self.store.save(config)
            except _STORE_ERRORS as e:
                logger.error("Failed to save proxy configuration: %s", e)
                raise ConfigPersistError(f"Failed to save proxy configuration: {e}") from e
            logger.info("Query logging to %s written to proxy configuration", path)
            self._reconcile_service()
        else:
            logger.debug("Proxy configuration already logs to %s", path)

        if not Path(path).is_file():
            self._stop_tail()
            self._enabled = False
            logger.error("Query log file %s does not exist", path)
            raise FileAccessError(f"Query log file not found: {path}")

        try:
            self._start_tail(path)
        except FileAccessError as e:
            self._stop_tail()
            self._enabled = False
            logger.error("Could not start tailing %s: %s", path, e)
            raise

    def _reconcile_service(self) -> None:
        client = self.client
        state = self._query("state", lambda: service_state(client))
        logger.info("Proxy service state: %s", state.value)
        if state is ServiceState.NOT_INSTALLED:
            self._lifecycle("install", client.install, self.install_timeout)
            if not self._query("install check", client.is_installed):
                logger.error("Proxy service is still not installed after install")
                raise ServiceOperationError("Proxy service did not install")
            self._lifecycle("start", client.start, self.start_timeout)
        elif state is ServiceState.STOPPED:
            self._lifecycle("start", client.start, self.start_timeout)
        else:
            self._lifecycle("restart", client.restart, self.restart_timeout)

    def _query(self, what: str, call: Callable[[], object]):
        try:
            return call()
        except Exception as e:
            logger.error("Proxy service %s query failed: %s", what, e)
            raise ServiceOperationError(f"Proxy service {what} query failed: {e}") from e

    def _lifecycle(self, action: str, call: Callable[[], bool], wait: float) -> None:
        try:
            ok = call()
        except Exception as e:
            logger.error("Proxy service %s failed: %s", action, e)
            raise ServiceOperationError(f"Proxy service {action} failed: {e}") from e
        if not ok:
            logger.error("Proxy service %s failed", action)
            raise ServiceOperationError(f"Proxy service {action} failed")
        self._sleep(wait)

    # -- disable -----------------------------------------------------------

    def _disable(self) -> None:
        self._stop_tail()
        self._enabled = False
        self.sink.clear()

        try:
            running = self.client.is_running()
        except Exception as e:
            logger.warning("Could not query proxy service state: %s", e)
            return
        if not running:
            return

        changed = False
        try:
            config = self.store.load()
            query_log = config.get_query_log() if config is not None else None
            if query_log is not None and query_log.file_path:
                config.set_query_log(None)
                self.store.save(config)
                changed = True
        except _STORE_ERRORS as e:
            logger.warning("Could not remove query log from proxy configuration: %s", e)

        if not changed:
            return
        try:
            restarted = self.client.restart()
        except Exception as e:
            logger.warning("Proxy service restart after disabling query log failed: %s", e)
            return
        if restarted:
            self._sleep(self.restart_timeout)
        else:
            logger.warning("Proxy service restart after disabling query log failed")

    # -- tail --------------------------------------------------------------

    def _start_tail(self, path: str) -> None:
        self._stop_tail()
        tailer = self._tailer_factory()
        entries = tailer.start(path)
        worker = threading.Thread(
            target=self._pump, args=(tailer, entries), name="dnsquerylog-tail", daemon=True
        )
        self._tailer = tailer
        self._worker = worker
        # Set before the worker runs so an early tail failure can reset it
        self._enabled = True
        worker.start()

    def _pump(self, tailer: FileTailer, entries: TailStream) -> None:
        try:
            for entry in entries:
                if tailer.stopped:
                    break
                self.sink.push(entry)
        except FileAccessError as e:
            logger.warning("Query log tail ended: %s", e)
            self._tail_died(tailer)
        except Exception:
            logger.exception("Query log tail failed")
            self._tail_died(tailer)
        finally:
            entries.close()

    def _tail_died(self, tailer: FileTailer) -> None:
        # A stop/restart may already have replaced this tailer
        if self._tailer is tailer:
            self._enabled = False

    def _stop_tail(self) -> None:
        tailer, worker = self._tailer, self._worker
        self._tailer = None
        self._worker = None
        if tailer is None:
            return
        tailer.stop()
        if worker is not None:
            worker.join(timeout=self.poll_interval + STOP_GRACE)
            if worker.is_alive():
                logger.warning("Tail worker did not stop in time")
