import os
from pathlib import Path
from typing import Dict, Any, List
import yaml
import logging

logger = logging.getLogger('replicator')

SITE_TYPES = ('sqlite', 'webhdfs')


class ConfigLoader:
    """Handle loading and validation of configuration"""

    def __init__(self, config_path: str = None):
        """
        Initialize config loader

        Args:
            config_path: Path to custom config file (optional)
        """
        self.config_path = config_path or self._get_default_config_path()
        self.config = {}

    @staticmethod
    def _get_default_config_path() -> str:
        """Get path to default config file"""
        return str(Path(__file__).parent / 'default_config.yaml')

    def load(self) -> Dict[str, Any]:
        """
        Load and validate configuration

        Returns:
            Validated configuration dictionary
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}

            self.update_from_env()
            self._validate_config()
            return self.config

        except Exception as e:
            logger.error(f"Error loading config from {self.config_path}: {str(e)}")
            raise

    def _validate_config(self):
        """Validate required configuration parameters"""
        required_sections = ['storage', 'sites', 'replications', 'logging']

        for section in required_sections:
            if section not in self.config:
                raise ValueError(f"Missing required config section: {section}")

        if 'path' not in self.config['storage']:
            raise ValueError("Missing required storage path")

        site_names = self._validate_sites(self.config['sites'] or [])

        seen = set()
        for replication in self.config['replications'] or []:
            name = replication.get('name')
            if not name:
                raise ValueError("Every replication needs a name")
            if name in seen:
                raise ValueError(f"Duplicate replication name: {name}")
            seen.add(name)

            for role in ('source', 'destination'):
                if replication.get(role) not in site_names:
                    raise ValueError(
                        f"Replication {name} refers to unknown {role} site: {replication.get(role)}"
                    )
            if replication['source'] == replication['destination']:
                raise ValueError(f"Replication {name} uses the same site on both ends")
            if int(replication.get('failure_retry_count', 5)) < 1:
                raise ValueError(f"Replication {name} needs a failure_retry_count of at least 1")

    @staticmethod
    def _validate_sites(sites: List[Dict[str, Any]]) -> set:
        names = set()
        for site in sites:
            for key in ('name', 'type', 'url'):
                if not site.get(key):
                    raise ValueError(f"Site definition is missing '{key}': {site}")
            if site['type'] not in SITE_TYPES:
                raise ValueError(f"Unknown type for site {site['name']}: {site['type']}")
            names.add(site['name'])
        return names

    def update_from_env(self):
        """Update configuration from environment variables"""
        env_mappings = {
            'REPLICATOR_DB_PATH': ('storage', 'path', str),
            'LOG_LEVEL': ('logging', 'level', str),
            'REPLICATOR_WEB_PORT': ('web', 'port', int)
        }

        for env_var, (section, key, type_conv) in env_mappings.items():
            if env_var in os.environ:
                try:
                    if section == 'logging' and key == 'level':
                        self._set_log_level(type_conv(os.environ[env_var]))
                    else:
                        self.config.setdefault(section, {})[key] = type_conv(os.environ[env_var])
                except Exception as e:
                    logger.warning(
                        f"Failed to set {env_var} config value: {str(e)}"
                    )

    def _set_log_level(self, level: str):
        """Apply a level override to the root logger of the dictConfig section"""
        logging_config = self.config.setdefault('logging', {})
        logging_config.setdefault('root', {})['level'] = level.upper()
