# common/peer_connection.py
"""
Uma conexão TCP (aceita pelo servidor ou aberta pelo cliente) com a sua
thread de leitura dedicada.
"""
import errno
import socket
import struct
import sys
import threading
from enum import Enum
from typing import Callable, Optional

from logs.logger import logger
from payload_models import PeerAddress, ensure_single_line


class ConnectionState(Enum):
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class PeerConnection:
    """
    Dona de um socket. Envia linhas e entrega cada linha recebida para
    `on_line(conexao, texto)`. Quando a leitura termina (EOF, erro ou
    close()), chama `on_closed(conexao)` exatamente uma vez.
    """

    def __init__(
        self,
        sock: socket.socket,
        on_line: Optional[Callable[["PeerConnection", str], None]] = None,
        on_closed: Optional[Callable[["PeerConnection"], None]] = None,
        remote_address: Optional[PeerAddress] = None,
        local_address: Optional[PeerAddress] = None,
        send_timeout: Optional[float] = None,
    ):
        self.socket = sock
        self.remote_address = remote_address or PeerAddress.from_sockaddr(sock.getpeername())
        self.local_address = local_address or PeerAddress.from_sockaddr(sock.getsockname())
        self.state = ConnectionState.OPEN

        self._on_line = on_line
        self._on_closed = on_closed
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._reader_thread: Optional[threading.Thread] = None
        self._finished = False

        self.send_timeout = send_timeout
        if send_timeout is not None:
            self._apply_send_timeout(send_timeout)

    @classmethod
    def connect(cls, host: str, port: int, timeout: float,
                on_line=None, on_closed=None, send_timeout=None) -> "PeerConnection":
        """Abre a conexão de saída. Erros de rede sobem como OSError."""
        sock = socket.create_connection((host, port), timeout=timeout)
        # O timeout vale só para o handshake; a leitura fica bloqueante
        sock.settimeout(None)
        try:
            return cls(sock, on_line=on_line, on_closed=on_closed, send_timeout=send_timeout)
        except OSError:
            sock.close()
            raise

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def start_reader(self) -> None:
        with self._state_lock:
            if self._reader_thread is not None or self.state is not ConnectionState.OPEN:
                return
            self._reader_thread = threading.Thread(
                target=self._reader_loop,
                name=f"conn-{self.remote_address}",
                daemon=True
            )
        self._reader_thread.start()

    def send(self, text: str) -> None:
        """
        Escreve `text` + quebra de linha. Levanta OSError se a conexão caiu
        e TimeoutError (também um OSError) se o peer não esvaziar o buffer
        dentro de `send_timeout`. Depois de um timeout a linha pode ter saído
        pela metade: quem chamou deve fechar a conexão.
        """
        data = (ensure_single_line(text) + "\n").encode("utf-8")
        with self._send_lock:
            if self.state is not ConnectionState.OPEN:
                raise OSError(errno.ENOTCONN, f"Conexão com {self.remote_address} não está aberta")
            try:
                self.socket.sendall(data)
            except BlockingIOError as e:
                # SO_SNDTIMEO estourado num socket bloqueante chega como EAGAIN
                raise TimeoutError(
                    errno.ETIMEDOUT,
                    f"Envio para {self.remote_address} excedeu {self.send_timeout}s"
                ) from e

    def close(self) -> None:
        """Idempotente. Desbloqueia a leitura; o evento de fim sai pela thread de leitura."""
        with self._state_lock:
            if self.state is not ConnectionState.OPEN:
                return
            self.state = ConnectionState.CLOSING
            reader_running = self._reader_thread is not None and self._reader_thread.is_alive()

        self._shutdown()

        if not reader_running:
            self._finish()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._reader_thread is not None and self._reader_thread is not threading.current_thread():
            self._reader_thread.join(timeout)

    def _reader_loop(self) -> None:
        with logger.contextualize(peer=str(self.remote_address)):
            try:
                # makefile para leitura baseada em linhas
                with self.socket.makefile('r', encoding='utf-8', errors='replace', newline='\n') as reader:
                    for raw_line in reader:
                        self._deliver(raw_line.rstrip("\r\n"))
                logger.info(f"Conexão encerrada por {self.remote_address}.")
            except (ConnectionResetError, BrokenPipeError):
                logger.warning(f"Conexão com {self.remote_address} perdida abruptamente.")
            except OSError as e:
                if self.state is ConnectionState.OPEN:
                    logger.warning(f"Erro de socket com {self.remote_address}: {e}")
            finally:
                self._finish()

    def _deliver(self, text: str) -> None:
        if self._on_line is None:
            return
        try:
            self._on_line(self, text)
        except Exception:
            logger.exception(f"Erro processando linha de {self.remote_address}")

    def _apply_send_timeout(self, seconds: float) -> None:
        """Prazo só para escrita; a leitura continua bloqueante."""
        if sys.platform == "win32":
            value = struct.pack("L", int(seconds * 1000))  # DWORD em ms
        else:
            whole = int(seconds)
            value = struct.pack("ll", whole, int((seconds - whole) * 1_000_000))  # struct timeval
        self.socket.setsockopt(socket.SOL_SOCKET, socket.SO_SNDTIMEO, value)

    def _shutdown(self) -> None:
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # já desconectado

    def _finish(self) -> None:
        with self._state_lock:
            if self._finished:
                return
            self._finished = True
            self.state = ConnectionState.CLOSED

        # Com o shutdown feito, um sendall preso em outra thread falha na hora
        self._shutdown()
        with self._send_lock:
            self.socket.close()

        if self._on_closed is not None:
            try:
                self._on_closed(self)
            except Exception:
                logger.exception(f"Erro no encerramento da conexão {self.remote_address}")
