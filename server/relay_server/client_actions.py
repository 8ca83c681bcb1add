# relay_server/client_actions.py
from typing import List, Optional

from common.errors import UnknownPeer
from logs.logger import logger
from payload_models import PeerAddress, ensure_single_line, roster_snapshot


class ClientActionsMixin:

    def send_to_all(self, text: str, exclude: Optional[PeerAddress] = None) -> List[PeerAddress]:
        """
        Envia `text` para todos os clientes do roster (menos `exclude`).
        A falha de um cliente não interrompe o envio para os outros.
        Retorna os endereços que receberam.
        """
        ensure_single_line(text)
        delivered: List[PeerAddress] = []

        # Cópia tirada sob o lock; os envios acontecem fora dele
        for address, connection in self.roster.items():
            if exclude is not None and address == exclude:
                continue
            try:
                connection.send(text)
                delivered.append(address)
            except OSError as e:
                logger.warning(f"Falha ao enviar para {address}: {e}. Encerrando conexão.")
                connection.close()

        return delivered

    def send_to(self, address, text: str) -> None:
        """Envia `text` para um único cliente. `address` aceita PeerAddress ou "ip:porta"."""
        if not isinstance(address, PeerAddress):
            address = PeerAddress.parse(str(address))
        ensure_single_line(text)

        connection = self.roster.get(address)
        if connection is None:
            logger.warning(f"Envio para {address} ignorado: cliente não está conectado.")
            raise UnknownPeer(address)

        try:
            connection.send(text)
        except OSError as e:
            logger.warning(f"Falha ao enviar para {address}: {e}. Encerrando conexão.")
            connection.close()
            raise

        logger.info(f"Mensagem enviada para {address}.")

    def broadcast_roster(self) -> List[PeerAddress]:
        """Envia a lista "CLIENTES:..." atual para todos os clientes."""
        line = roster_snapshot(self.roster.snapshot())
        delivered = self.send_to_all(line)
        logger.info(f"Roster enviado para {len(delivered)} cliente(s): {line}")
        return delivered
