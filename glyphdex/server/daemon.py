"""Class for handling JSON-RPC communication with a Radiant node."""

import itertools
from typing import Any, Dict, List, Optional, Union
from urllib.parse import unquote, urlsplit, urlunsplit

import aiohttp
from aiorpcx import TaskTimeout, timeout_after

from glyphdex.lib import util
from glyphdex.lib.tx import Block, parse_block, parse_tx, Tx


class DaemonError(Exception):
    """Raised on an HTTP failure or a JSON-RPC error envelope.

    ``error`` is the RPC error payload when the node returned one.
    """

    def __init__(self, message: str, error: Any = None, status: Optional[int] = None):
        super().__init__(message)
        self.error = error
        self.status = status


class DaemonTimeoutError(DaemonError):
    """The call was cancelled by its timeout."""


class Daemon:
    """Handles connections to a node's JSON-RPC interface.

    One request per call; retry policy belongs to the caller.
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, url: str, user: str = '', password: str = '',
                 timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[aiohttp.ClientSession] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        parts = urlsplit(url)
        user = user or unquote(parts.username or '')
        password = password or unquote(parts.password or '')
        netloc = parts.hostname or ''
        if parts.port:
            netloc = f'{netloc}:{parts.port}'
        self.url = urlunsplit((parts.scheme, netloc, parts.path or '/', '', ''))
        self.auth = aiohttp.BasicAuth(user, password) if user else None
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    @classmethod
    def from_env(cls, env, session=None) -> 'Daemon':
        return cls(env.daemon_url, env.rpc_user, env.rpc_password,
                   timeout=env.rpc_timeout, session=session)

    def _get_session(self):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _post(self, payload: Dict[str, Any]) -> Any:
        session = self._get_session()
        async with session.post(self.url, json=payload, auth=self.auth) as resp:
            if not 200 <= resp.status < 300:
                text = (await resp.text()).strip() or resp.reason
                error = None
                # bitcoind-style nodes report RPC errors with a 500 and a JSON body
                if resp.content_type == 'application/json':
                    try:
                        error = (await resp.json()).get('error')
                    except (ValueError, aiohttp.ContentTypeError):
                        error = None
                raise DaemonError(f'HTTP error {resp.status}: {text}',
                                  error=error, status=resp.status)
            return await resp.json(content_type=None)

    async def execute_command(self, method: str, params: Optional[List] = None) -> Any:
        """Send a single JSON-RPC request and return its result."""
        payload = {
            'jsonrpc': '1.0',
            'id': next(self._ids),
            'method': method,
            'params': list(params or []),
        }
        self.logger.debug(f'executing RPC method {method}')
        try:
            async with timeout_after(self.timeout):
                data = await self._post(payload)
        except TaskTimeout:
            raise DaemonTimeoutError(
                f'RPC method {method} timed out after {self.timeout}s') from None
        except aiohttp.ClientError as e:
            raise DaemonError(f'RPC method {method} failed: {e}') from e

        if not isinstance(data, dict):
            raise DaemonError(f'RPC method {method} returned a malformed envelope')
        error = data.get('error')
        if error is not None:
            raise DaemonError(f'RPC error in {method}: {error}', error=error)
        return data.get('result')

    async def getblockcount(self) -> int:
        return await self.execute_command('getblockcount')

    async def getblockhash(self, height: int) -> str:
        return await self.execute_command('getblockhash', [height])

    async def getblock(self, hash_or_height: Union[str, int], verbosity: int = 2) -> Any:
        """Block at a hash or height.  Verbosity 0 returns the raw hex."""
        if isinstance(hash_or_height, int):
            hash_or_height = await self.getblockhash(hash_or_height)
        return await self.execute_command('getblock', [hash_or_height, verbosity])

    async def getblock_hex(self, hash_or_height: Union[str, int]) -> str:
        return await self.getblock(hash_or_height, 0)

    async def get_block(self, hash_or_height: Union[str, int]) -> Block:
        """Parsed block with full transaction detail."""
        return parse_block(await self.getblock(hash_or_height, 2))

    async def getrawtransaction(self, txid: str, verbose: bool = True) -> Any:
        return await self.execute_command('getrawtransaction', [txid, verbose])

    async def get_transaction(self, txid: str) -> Tx:
        return parse_tx(await self.getrawtransaction(txid, True))

    async def decoderawtransaction(self, raw_hex: str) -> Dict[str, Any]:
        return await self.execute_command('decoderawtransaction', [raw_hex])

    async def getblockchaininfo(self) -> Dict[str, Any]:
        return await self.execute_command('getblockchaininfo')
