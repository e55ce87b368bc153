# replicator/logging_config.py
import logging.config


def apply_logging(config: dict):
    """Setup logging from the logging section of a loaded configuration"""
    logging.config.dictConfig(config['logging'])
    return logging.getLogger(__name__)
