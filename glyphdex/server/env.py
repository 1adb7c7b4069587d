"""Runtime configuration for the Glyph importer."""

from urllib.parse import quote, unquote, urlsplit

from glyphdex.lib.env_base import EnvBase
from glyphdex.lib.util import redact_url

# First block height in the Glyph era
DEFAULT_GENESIS_HEIGHT = 315114
DEFAULT_GENESIS_HASH = '00' * 32


class Env(EnvBase):
    """Wraps environment configuration."""

    def __init__(self, overrides=None):
        super().__init__(overrides)

        self.daemon_url = self.default('DAEMON_URL', None)
        if self.daemon_url:
            parts = urlsplit(self.daemon_url)
            if parts.scheme not in ('http', 'https') or not parts.hostname:
                raise self.Error(f'invalid DAEMON_URL {redact_url(self.daemon_url)}')
            self.rpc_host = parts.hostname
            self.rpc_port = parts.port or 7332
            self.rpc_user = unquote(parts.username or '')
            self.rpc_password = unquote(parts.password or '')
        else:
            self.rpc_host = self.default('RPC_HOST', '127.0.0.1')
            self.rpc_port = self.integer('RPC_PORT', 7332)
            self.rpc_user = self.default('RPC_USER', 'user')
            self.rpc_password = self.default('RPC_PASSWORD', 'password')
            self.daemon_url = (f'http://{quote(self.rpc_user, safe="")}:'
                               f'{quote(self.rpc_password, safe="")}@'
                               f'{self.rpc_host}:{self.rpc_port}/')
        self.rpc_timeout = self.number('RPC_TIMEOUT', 30.0)

        self.db_engine = self.default('DB_ENGINE', 'leveldb')
        self.db_dir = self.default('DB_DIRECTORY', './glyphdex-db')

        self.batch_size = self.integer('BATCH_SIZE', 50)
        self.genesis_height = self.integer('GENESIS_HEIGHT', DEFAULT_GENESIS_HEIGHT)
        self.genesis_hash = self.default('GENESIS_HASH', DEFAULT_GENESIS_HASH)
        self.index_rxd = self.boolean('INDEX_RXD', False)

        self.sync_delay = self.number('SYNC_DELAY', 5.0)
        self.poll_interval = self.number('POLL_INTERVAL', 300.0)
        self.retry_delay = self.number('RETRY_DELAY', 60.0)
        self.stats_ttl = self.number('STATS_TTL', 60.0)

        self.log_level = self.default('LOG_LEVEL', 'INFO').upper()
        self.log_to_db = self.boolean('LOG_TO_DB', True)
        self.admin_api_key = self.default('ADMIN_API_KEY', '').strip()
        self.admin_host = self.default('ADMIN_HOST', '127.0.0.1')
        self.admin_port = self.integer('ADMIN_PORT', None)

        if self.batch_size < 1:
            raise self.Error(f'BATCH_SIZE must be positive, got {self.batch_size}')
        if self.rpc_timeout <= 0:
            raise self.Error(f'RPC_TIMEOUT must be positive, got {self.rpc_timeout}')
        if self.genesis_height < 0:
            raise self.Error('GENESIS_HEIGHT must not be negative')

    @property
    def redacted_daemon_url(self):
        return redact_url(self.daemon_url)
