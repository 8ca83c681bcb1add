# common/config_loader.py
import copy
import json
from typing import Dict, Optional

from logs.logger import logger


def merge_config(defaults: Dict, overrides: Dict) -> Dict:
    """Mescla `overrides` sobre uma cópia de `defaults` (recursivo por seção)."""
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str], defaults: Dict) -> Dict:
    """Carrega a configuração do arquivo JSON por cima dos defaults."""
    if config_path is None:
        return copy.deepcopy(defaults)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
        logger.info(f"Configuração '{config_path}' carregada.")
    except FileNotFoundError:
        logger.critical(f"Arquivo de configuração '{config_path}' não encontrado!")
        raise
    except json.JSONDecodeError:
        logger.critical(f"Erro ao decodificar (formato inválido) o JSON em '{config_path}'!")
        raise

    return merge_config(defaults, raw)
