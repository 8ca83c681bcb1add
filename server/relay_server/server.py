# relay_server/server.py
import socket
import threading
import time
from typing import List, Optional

from common.config_loader import load_config
from common.errors import BindError
from common.events import EventEmitterMixin
from logs.logger import logger
from payload_models import PeerAddress
# Importa os Mixins
from .client_actions import ClientActionsMixin
from .config import DEFAULT_CONFIG
from .connection_handler import ConnectionHandlerMixin
from .roster import Roster


class Server(ConnectionHandlerMixin, ClientActionsMixin, EventEmitterMixin):
    """
    Servidor de chat: aceita conexões TCP, mantém o roster e envia
    mensagens para todos ou para um cliente.

    Eventos: new_connection(endereco), connection_closed(endereco),
    data_received(endereco, texto).
    """

    EVENTS = ("new_connection", "connection_closed", "data_received")

    def __init__(self, config_path: Optional[str] = None, port: Optional[int] = None,
                 host: Optional[str] = None):
        """Inicializa o servidor carregando a configuração."""
        self.config = load_config(config_path, DEFAULT_CONFIG)
        if host is not None:
            self.config['server']['ip'] = host
        if port is not None:
            self.config['server']['port'] = port

        self.host = self.config['server']['ip']
        self.port = int(self.config['server']['port'])

        # Estado do Servidor
        self.roster = Roster()
        self._init_events()

        # Controle de Threads
        self.server_socket: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._bound_address: Optional[PeerAddress] = None
        self._running = False
        self._state_lock = threading.Lock()

        logger.info(f"Servidor configurado para {self.host}:{self.port}.")

    @property
    def address(self) -> Optional[PeerAddress]:
        """Endpoint efetivamente em escuta (útil com porta 0)."""
        return self._bound_address

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def peers(self) -> List[PeerAddress]:
        return self.roster.snapshot()

    # --- MÉTODOS DE CONTROLE DO SERVIDOR ---

    def listen(self, port: Optional[int] = None) -> PeerAddress:
        """
        Faz o bind e inicia a thread de accept. Erros de bind sobem como
        BindError aqui mesmo, antes de qualquer thread ser criada.
        """
        with self._state_lock:
            if self._running:
                logger.warning("Servidor já está escutando; ignorando chamada extra.")
                return self._bound_address

            if port is not None:
                self.port = port

            family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
            server_socket = socket.socket(family, socket.SOCK_STREAM)
            try:
                server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                server_socket.bind((self.host, self.port))
                server_socket.listen(self.config['server']['backlog'])
                server_socket.settimeout(self.config['server']['accept_timeout'])
            except OSError as e:
                server_socket.close()
                logger.critical(f"Não foi possível escutar em {self.host}:{self.port}: {e}")
                raise BindError(f"Não foi possível escutar em {self.host}:{self.port}: {e}") from e

            self.server_socket = server_socket
            self._bound_address = PeerAddress.from_sockaddr(server_socket.getsockname())
            self._running = True

            self._accept_thread = threading.Thread(target=self._listen_loop, name="Listener", daemon=True)
            self._accept_thread.start()

        return self._bound_address

    def stop(self):
        """Para o accept, fecha o socket principal e todas as conexões."""
        with self._state_lock:
            if not self._running:
                return  # Já está parado

            logger.warning("Recebido sinal de encerramento...")
            self._running = False

            # 1. Fecha o socket principal para desbloquear o accept()
            try:
                self.server_socket.close()
                logger.info("Socket do listener fechado.")
            except OSError as e:
                logger.error(f"Erro ao fechar socket do listener: {e}")

            accept_thread = self._accept_thread
            self._accept_thread = None

        # 2. Fecha as conexões antes do join: um envio preso no listener
        #    (roster de um accept) é desbloqueado pelo shutdown
        closed = self._close_connections()

        # 3. Espera o listener terminar (não entra conexão nova depois disso)
        if accept_thread is not None and accept_thread is not threading.current_thread():
            accept_thread.join(timeout=self.config['server']['accept_timeout'] * 4 + 1)
            if accept_thread.is_alive():
                logger.warning("Thread 'Listener' não finalizou a tempo.")

        # 4. Segunda varredura: pega quem entrou no roster durante o join
        closed += self._close_connections()
        for connection in closed:
            connection.join(timeout=2.0)

        logger.info("Servidor encerrado.")

    def _close_connections(self) -> list:
        """Fecha tudo que está no roster; cada conexão sai pelo seu próprio evento."""
        connections = [connection for _, connection in self.roster.items()]
        for connection in connections:
            connection.close()
        return connections

    def serve_forever(self):
        """Mantém a thread principal viva até stop() ou Ctrl+C."""
        try:
            while self._running:
                time.sleep(0.5)
        except KeyboardInterrupt:
            self.stop()
