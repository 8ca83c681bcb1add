# client/run_client.py
"""
Console simples do cliente de chat.

    <mensagem>          envia para todos
    @ip:porta <msg>     envia para um cliente
    /peers              lista os outros clientes conectados
    /quit               encerra
"""
import os
import sys

from common.errors import ConnectError, NotConnected
from logs.logger import logger, setup_file_logging
from .relay_client import Client


def _print_roster(peers):
    if peers:
        print("Clientes conectados: " + ", ".join(str(p) for p in peers))
    else:
        print("Nenhum outro cliente conectado.")


def _print_closed():
    print("Conexão com o servidor encerrada.")


def handle_command(client: Client, line: str) -> bool:
    """Processa uma linha digitada. Retorna False quando o console deve encerrar."""
    if line == "/quit":
        return False
    if line == "/peers":
        _print_roster(client.roster)
        return True

    if line.startswith("@"):
        target, _, message = line[1:].partition(" ")
        try:
            client.send_to(target, message)
        except ValueError as e:
            logger.error(f"Destino inválido '{target}': {e}")
    else:
        client.send_to_all(line)
    return True


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else None

    if config_path is not None and not os.path.exists(config_path):
        logger.critical(f"ERRO: Arquivo de configuração não encontrado em: {config_path}")
        logger.critical("Exemplo: python -m client.run_client client/config.json")
        return 1

    client = Client(config_path=config_path)
    if client.config['logging']['file_logging']:
        setup_file_logging(client.config['logging']['process_id'])

    client.on("message_received", lambda text: print(f"< {text}"))
    client.on("roster_updated", _print_roster)
    client.on("connection_closed", _print_closed)

    try:
        client.connect()
    except ConnectError as e:
        logger.critical(f"Falha ao conectar: {e}")
        return 1

    try:
        for raw in sys.stdin:
            line = raw.strip()
            if not line:
                continue
            if not handle_command(client, line):
                break
    except NotConnected:
        logger.error("Sem conexão com o servidor.")
    except KeyboardInterrupt:
        pass
    finally:
        client.disconnect()

    return 0


if __name__ == "__main__":
    sys.exit(main())
