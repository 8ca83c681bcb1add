# relay_client/client.py
import threading
from typing import Iterable, List, Optional

from common.config_loader import load_config
from common.errors import ConnectError, NotConnected
from common.events import EventEmitterMixin
from common.peer_connection import PeerConnection
from logs.logger import logger
from payload_models import (PeerAddress, addressed_envelope, broadcast_envelope,
                            is_roster_line, parse_roster)
from .config import DEFAULT_CONFIG


class Client(EventEmitterMixin):
    """
    Cliente de chat: uma conexão de saída com o servidor, a visão local
    do roster (empurrada pelo servidor) e o envio de mensagens.

    Eventos: data_received(texto) para toda linha recebida,
    roster_updated(peers) e message_received(texto) conforme o tipo,
    connection_closed() uma vez quando a conexão termina.
    """

    EVENTS = ("data_received", "message_received", "roster_updated", "connection_closed")

    def __init__(self, config_path: Optional[str] = None):
        self.config = load_config(config_path, DEFAULT_CONFIG)

        self.local_endpoint: Optional[PeerAddress] = None
        self.remote_endpoint: Optional[PeerAddress] = None
        self.roster: List[PeerAddress] = []

        self._connection: Optional[PeerConnection] = None
        self._lock = threading.Lock()
        self._init_events()

    @property
    def connected(self) -> bool:
        connection = self._connection
        return connection is not None and connection.is_open

    def connect(self, host: Optional[str] = None, port: Optional[int] = None) -> PeerAddress:
        """Conecta no servidor. Recusa, timeout ou host inválido viram ConnectError."""
        host = host or self.config['server']['ip']
        port = int(port if port is not None else self.config['server']['port'])

        if self.connected:
            raise ConnectError("O cliente já está conectado")

        try:
            connection = PeerConnection.connect(
                host, port,
                timeout=self.config['timing']['connect_timeout'],
                on_line=self._on_line,
                on_closed=self._on_closed,
                send_timeout=self.config['timing']['send_timeout']
            )
        except OSError as e:
            logger.error(f"Não foi possível conectar em {host}:{port}: {e}")
            raise ConnectError(f"Não foi possível conectar em {host}:{port}: {e}") from e

        with self._lock:
            if self._connection is not None and self._connection.is_open:
                # Outra thread conectou enquanto esperávamos o handshake
                connection.close()
                raise ConnectError("O cliente já está conectado")
            self._connection = connection
            self.local_endpoint = connection.local_address
            self.remote_endpoint = connection.remote_address
            self.roster = []

        connection.start_reader()
        logger.success(
            f"O cliente se conectou ao servidor IP = {self.remote_endpoint.ip}, "
            f"Porta = {self.remote_endpoint.port} (local {self.local_endpoint})"
        )
        return self.remote_endpoint

    def disconnect(self) -> None:
        """Fecha a conexão; connection_closed é emitido pela thread de leitura."""
        with self._lock:
            connection = self._connection
        if connection is None:
            return
        connection.close()
        connection.join(timeout=2.0)

    def send_data(self, text: str) -> None:
        """Envia uma linha crua. Sem conexão ativa levanta NotConnected."""
        with self._lock:
            connection = self._connection
        if connection is None or not connection.is_open:
            raise NotConnected("O cliente não está conectado")

        try:
            connection.send(text)
        except OSError as e:
            logger.warning(f"Falha ao enviar para o servidor: {e}. Encerrando conexão.")
            connection.close()
            raise NotConnected(f"Conexão com o servidor perdida: {e}") from e

    def send_to_all(self, text: str) -> None:
        self.send_data(broadcast_envelope(text))

    def send_to(self, address, text: str) -> None:
        self.send_data(addressed_envelope(address, text))

    def is_self(self, address: PeerAddress) -> bool:
        """Compara com o endpoint local (ambos já normalizados para IPv4 quando mapeados)."""
        return self.local_endpoint is not None and str(address) == str(self.local_endpoint)

    def exclude_self(self, peers: Iterable[PeerAddress]) -> List[PeerAddress]:
        return [peer for peer in peers if not self.is_self(peer)]

    # --- CALLBACKS DA CONEXÃO ---

    def _on_line(self, connection: PeerConnection, text: str):
        if connection is not self._connection:
            return

        self._emit("data_received", text)

        if is_roster_line(text):
            peers = self.exclude_self(parse_roster(text))
            with self._lock:
                self.roster = peers
            logger.info(f"Roster atualizado: {len(peers)} outro(s) cliente(s).")
            self._emit("roster_updated", list(peers))
        else:
            logger.info(f"O servidor enviou a seguinte mensagem: {text}")
            self._emit("message_received", text)

    def _on_closed(self, connection: PeerConnection):
        with self._lock:
            if connection is not self._connection:
                return
            self._connection = None
            self.local_endpoint = None
            self.remote_endpoint = None
            self.roster = []

        logger.warning("Finalizou a conexão com o servidor.")
        self._emit("connection_closed")
