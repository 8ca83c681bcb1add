# server/run_server.py
import os
import sys

from common.errors import BindError
from logs.logger import logger, setup_file_logging
from .relay_server import MessageRelay, Server


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    # --- LÓGICA DE ARGUMENTOS ---
    # O caminho do config é opcional; sem ele valem os padrões (porta 8050)
    config_path = argv[0] if argv else None

    if config_path is not None and not os.path.exists(config_path):
        logger.critical(f"ERRO: Arquivo de configuração não encontrado em: {config_path}")
        logger.critical("Exemplo: python -m server.run_server server/config.json")
        return 1

    try:
        server = Server(config_path=config_path)
    except Exception as e:
        logger.critical(f"Falha ao carregar configuração do servidor: {e}")
        return 1

    if server.config['logging']['file_logging']:
        setup_file_logging(server.config['logging']['process_id'])

    if server.config['relay']['enabled']:
        MessageRelay(server, include_sender=server.config['relay']['broadcast_includes_sender']).attach()

    try:
        logger.info("Iniciando o servidor...")
        server.listen()
    except BindError as e:
        logger.critical(f"Falha ao iniciar o servidor: {e}")
        return 1

    server.serve_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
