"""Byte-stream transports for a language server: a QProcess pipe or a TCP relay."""

from __future__ import annotations

import logging
import os

from PySide6.QtCore import QObject, QProcess, QTimer, Signal
from PySide6.QtNetwork import QAbstractSocket, QTcpSocket

logger = logging.getLogger(__name__)


class LspTransport(QObject):
    """Duck-typed surface shared by every transport: `write()` plus `dataReceived`."""

    started = Signal()
    stopped = Signal()
    dataReceived = Signal(object)  # bytes
    statusMessage = Signal(str)

    @property
    def pid(self) -> int:
        return -1

    def is_running(self) -> bool:
        return False

    def write(self, data: bytes) -> bool:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class ProcessTransport(LspTransport):
    """Language server hosted as a child process, spoken to over stdin/stdout."""

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._proc = QProcess(self)
        self._proc.readyReadStandardOutput.connect(self._on_stdout_ready)
        self._proc.readyReadStandardError.connect(self._on_stderr_ready)
        self._proc.started.connect(self._on_process_started)
        self._proc.finished.connect(self._on_process_finished)
        self._proc.errorOccurred.connect(self._on_process_error)

        self._running = False
        self._stopping = False
        self._kill_timer = QTimer(self)
        self._kill_timer.setSingleShot(True)
        self._kill_timer.timeout.connect(self._force_terminate_if_running)

    @property
    def pid(self) -> int:
        return int(self._proc.processId() or -1)

    def is_running(self) -> bool:
        return self._proc.state() != QProcess.NotRunning

    def start(self, program: str, args: list[str] | None = None, *, cwd: str = "") -> None:
        if self.is_running():
            raise RuntimeError("Language server process is already running")
        self._stopping = False
        self._proc.setProgram(str(program or "node"))
        self._proc.setArguments([str(item) for item in (args or [])])
        working_dir = str(cwd or "").strip()
        if working_dir and os.path.isdir(working_dir):
            self._proc.setWorkingDirectory(working_dir)
        logger.debug("Starting language server: %s %s", program, " ".join(args or []))
        self._proc.start()

    def write(self, data: bytes) -> bool:
        if self._proc.state() == QProcess.NotRunning:
            return False
        written = int(self._proc.write(bytes(data)))
        if written < 0:
            if not self._stopping:
                self.statusMessage.emit(f"LSP write failed: {self._proc.errorString()}")
            return False
        return True

    def stop(self, grace_ms: int = 1200) -> None:
        state = self._proc.state()
        if state == QProcess.NotRunning:
            return
        self._stopping = True
        if state == QProcess.Starting:
            # Process pipes may not be writable yet; skip the graceful wait.
            self._force_terminate_if_running()
            return
        self._proc.closeWriteChannel()
        self._kill_timer.start(max(0, int(grace_ms)))

    def _force_terminate_if_running(self) -> None:
        if self._proc.state() == QProcess.NotRunning:
            return
        self._proc.terminate()
        if not self._proc.waitForFinished(300):
            self._proc.kill()

    def _on_process_started(self) -> None:
        self._running = True
        logger.debug("Language server started. PID: %s", self.pid)
        self.started.emit()

    def _on_process_finished(self, exit_code: int, _exit_status: QProcess.ExitStatus) -> None:
        self._kill_timer.stop()
        was_running = self._running
        self._running = False
        self._stopping = False
        logger.debug("Language server exited with code %s", exit_code)
        if was_running:
            self.stopped.emit()

    def _on_process_error(self, error: QProcess.ProcessError) -> None:
        if self._stopping and error in {
            QProcess.ProcessError.Crashed,
            QProcess.ProcessError.ReadError,
            QProcess.ProcessError.WriteError,
        }:
            return
        self.statusMessage.emit(f"LSP process error: {self._proc.errorString()}")

    def _on_stdout_ready(self) -> None:
        raw = bytes(self._proc.readAllStandardOutput())
        if raw:
            self.dataReceived.emit(raw)

    def _on_stderr_ready(self) -> None:
        raw = bytes(self._proc.readAllStandardError())
        if not raw:
            return
        text = raw.decode("utf-8", errors="replace").strip()
        if text:
            self.statusMessage.emit(text)


class RelayTransport(LspTransport):
    """Client side of a socket relay that proxies bytes to a language server process."""

    def __init__(self, pid: int = -1, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._pid = int(pid)
        self._socket = QTcpSocket(self)
        self._socket.connected.connect(self.started.emit)
        self._socket.disconnected.connect(self.stopped.emit)
        self._socket.readyRead.connect(self._on_ready_read)
        self._socket.errorOccurred.connect(self._on_socket_error)
        self._outbox: list[bytes] = []
        self._socket.connected.connect(self._flush_outbox)

    @property
    def pid(self) -> int:
        return self._pid

    def connect_to(self, host: str, port: int) -> None:
        self._socket.connectToHost(str(host or "127.0.0.1"), int(port))

    def is_running(self) -> bool:
        return self._socket.state() == QAbstractSocket.SocketState.ConnectedState

    def write(self, data: bytes) -> bool:
        state = self._socket.state()
        if state in (
            QAbstractSocket.SocketState.HostLookupState,
            QAbstractSocket.SocketState.ConnectingState,
        ):
            self._outbox.append(bytes(data))
            return True
        if state != QAbstractSocket.SocketState.ConnectedState:
            return False
        return int(self._socket.write(bytes(data))) >= 0

    def stop(self) -> None:
        self._outbox.clear()
        self._socket.disconnectFromHost()

    def _flush_outbox(self) -> None:
        queued = list(self._outbox)
        self._outbox.clear()
        for chunk in queued:
            self._socket.write(chunk)

    def _on_ready_read(self) -> None:
        raw = bytes(self._socket.readAll())
        if raw:
            self.dataReceived.emit(raw)

    def _on_socket_error(self, _error: QAbstractSocket.SocketError) -> None:
        self.statusMessage.emit(f"LSP relay error: {self._socket.errorString()}")
