# relay_server/connection_handler.py
import socket
import time

from common.peer_connection import PeerConnection
from logs.logger import logger
from payload_models import PeerAddress


class ConnectionHandlerMixin:

    def _listen_loop(self):
        """Loop principal que escuta por novas conexões."""
        server_socket = self.server_socket
        logger.success(f"Servidor escutando em {self.address}")

        while self._running:
            try:
                conn, addr = server_socket.accept()
            except socket.timeout:
                continue  # Volta ao início do loop para checar self._running
            except OSError as e:
                if not self._running:
                    logger.info("Listener encerrando devido ao shutdown.")
                    break
                logger.error(f"Erro no accept(): {e}")
                time.sleep(0.1)
                continue

            try:
                self._handle_connection(conn, addr)
            except Exception as e:
                logger.error(f"Erro registrando conexão de {addr}: {e}")
                conn.close()

        logger.info("Listener finalizado.")

    def _handle_connection(self, conn: socket.socket, addr):
        """Registra o socket aceito no roster e inicia sua thread de leitura."""
        conn.settimeout(None)
        address = PeerAddress.from_sockaddr(addr)
        connection = PeerConnection(
            conn,
            on_line=self._on_connection_line,
            on_closed=self._on_connection_closed,
            remote_address=address,
            send_timeout=self.config['server']['send_timeout']
        )

        if not self._running:
            connection.close()
            return

        previous = self.roster.add(address, connection)
        if previous is not None:
            logger.warning(f"Endereço {address} já estava no roster. Substituindo conexão antiga.")
            previous.close()

        logger.info(f"Se conectou um novo cliente: IP = {address.ip}, Porta = {address.port}")

        # new_connection sai antes de qualquer evento desta conexão:
        # a leitura (data_received / connection_closed) só começa depois
        self._emit("new_connection", address)
        # O snapshot é recalculado na hora do envio
        self.broadcast_roster()

        connection.start_reader()

    def _on_connection_line(self, connection: PeerConnection, text: str):
        address = connection.remote_address
        logger.info(f"Nova mensagem de {address}: {text}")
        self._emit("data_received", address, text)

    def _on_connection_closed(self, connection: PeerConnection):
        address = connection.remote_address

        # Só a própria conexão sai do roster (remover de novo é no-op)
        if self.roster.remove(address, connection) is None:
            return

        logger.info(f"Se desconectou o cliente: IP = {address.ip}, Porta = {address.port}")
        self._emit("connection_closed", address)

        if self._running and self.config['relay']['rebroadcast_roster_on_disconnect']:
            self.broadcast_roster()
