# relay_server/message_relay.py
from common.errors import UnknownPeer
from logs.logger import logger
from payload_models import PeerAddress, parse_envelope


class MessageRelay:
    """
    Colaborador que entende os envelopes dos clientes ("ALL:..." e
    "ip:porta:...") e pede ao servidor o envio correspondente.

    O servidor em si nunca repassa nada sozinho: sem um MessageRelay
    inscrito, as mensagens dos clientes só geram o evento data_received.
    """

    def __init__(self, server, include_sender: bool = False):
        self.server = server
        self.include_sender = include_sender

    def attach(self):
        self.server.on("data_received", self.handle)
        return self

    def detach(self):
        self.server.off("data_received", self.handle)

    def handle(self, sender: PeerAddress, text: str):
        envelope = parse_envelope(text)

        if envelope.kind == "ALL":
            exclude = None if self.include_sender else sender
            delivered = self.server.send_to_all(envelope.body, exclude=exclude)
            logger.info(f"[RELAY] {sender} -> todos ({len(delivered)} cliente(s))")

        elif envelope.kind == "TO":
            try:
                self.server.send_to(envelope.target, envelope.body)
                logger.info(f"[RELAY] {sender} -> {envelope.target}")
            except UnknownPeer:
                logger.warning(f"[RELAY] {sender} enviou para {envelope.target}, que não está conectado.")
            except OSError as e:
                logger.warning(f"[RELAY] Falha entregando mensagem de {sender} para {envelope.target}: {e}")

        else:
            logger.info(f"[RELAY] Mensagem de {sender} sem destino; apenas registrada.")
