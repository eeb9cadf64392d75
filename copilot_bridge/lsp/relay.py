"""Socket relay that exposes a stdio language server on a localhost TCP port.

Usage: copilot-bridge-relay <port> <command> [args...]
"""

from __future__ import annotations

import logging
import sys

from PySide6.QtCore import QCoreApplication, QObject, QProcess, Signal
from PySide6.QtNetwork import QHostAddress, QTcpServer, QTcpSocket

logger = logging.getLogger(__name__)


class LspRelayServer(QObject):
    """Accepts a single client and pipes its bytes to and from a child process."""

    clientConnected = Signal()
    finished = Signal()

    def __init__(self, program: str, args: list[str] | None = None, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._program = str(program or "")
        self._args = [str(item) for item in (args or [])]
        self._server = QTcpServer(self)
        self._server.newConnection.connect(self._on_new_connection)
        self._socket: QTcpSocket | None = None
        self._proc = QProcess(self)
        self._proc.readyReadStandardOutput.connect(self._on_stdout_ready)
        self._proc.readyReadStandardError.connect(self._on_stderr_ready)
        self._proc.finished.connect(self._on_process_finished)
        self._pending_input: list[bytes] = []
        self._proc.started.connect(self._flush_pending_input)

    @property
    def port(self) -> int:
        return int(self._server.serverPort())

    @property
    def pid(self) -> int:
        return int(self._proc.processId() or -1)

    def listen(self, port: int = 0, host: str = "127.0.0.1") -> bool:
        ok = self._server.listen(QHostAddress(str(host or "127.0.0.1")), int(port))
        if not ok:
            logger.error("Relay could not listen on %s:%s: %s", host, port, self._server.errorString())
        return bool(ok)

    def close(self) -> None:
        self._server.close()
        if self._socket is not None:
            self._socket.disconnectFromHost()
        if self._proc.state() != QProcess.NotRunning:
            self._proc.terminate()
            if not self._proc.waitForFinished(300):
                self._proc.kill()

    def _on_new_connection(self) -> None:
        socket = self._server.nextPendingConnection()
        if socket is None:
            return
        if self._socket is not None:
            logger.warning("Relay already has a client; refusing another connection")
            socket.disconnectFromHost()
            return
        self._socket = socket
        # One client per relay.
        self._server.close()
        socket.readyRead.connect(self._on_socket_ready_read)
        socket.disconnected.connect(self._on_socket_disconnected)
        self._proc.setProgram(self._program)
        self._proc.setArguments(self._args)
        self._proc.start()
        logger.debug("Relay client connected; started %s", self._program)
        self.clientConnected.emit()

    def _on_socket_ready_read(self) -> None:
        if self._socket is None:
            return
        raw = bytes(self._socket.readAll())
        if not raw:
            return
        if self._proc.state() == QProcess.Running:
            self._proc.write(raw)
        else:
            self._pending_input.append(raw)

    def _flush_pending_input(self) -> None:
        queued = list(self._pending_input)
        self._pending_input.clear()
        for chunk in queued:
            self._proc.write(chunk)

    def _on_stdout_ready(self) -> None:
        raw = bytes(self._proc.readAllStandardOutput())
        if raw and self._socket is not None:
            self._socket.write(raw)

    def _on_stderr_ready(self) -> None:
        text = bytes(self._proc.readAllStandardError()).decode("utf-8", errors="replace").strip()
        if text:
            logger.info("%s", text)

    def _on_socket_disconnected(self) -> None:
        logger.debug("Relay client disconnected")
        self.close()
        self.finished.emit()

    def _on_process_finished(self, exit_code: int, _exit_status: QProcess.ExitStatus) -> None:
        logger.debug("Relayed process exited with code %s", exit_code)
        if self._socket is not None:
            self._socket.disconnectFromHost()


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv if argv is None else argv)
    if len(args) < 3:
        sys.stderr.write("Usage: copilot-bridge-relay <port> <command> [args...]\n")
        return 2
    try:
        port = int(args[1])
    except ValueError:
        sys.stderr.write(f"Invalid port: {args[1]}\n")
        return 2

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app = QCoreApplication.instance() or QCoreApplication(args[:1])
    relay = LspRelayServer(args[2], args[3:])
    if not relay.listen(port):
        return 1
    relay.finished.connect(app.quit)
    logger.info("Relay listening on 127.0.0.1:%s", relay.port)
    return int(app.exec())


if __name__ == "__main__":
    raise SystemExit(main())
