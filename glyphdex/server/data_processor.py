"""
Block processing for the Glyph index.

For every block: store the header once, then for each transaction in order
record recognised outputs as TxOs, decode and upsert any Glyph they reveal,
and finally mark the transaction's inputs spent.  Outputs are handled in
array order since later outputs may refer back to earlier ones.  A failure
anywhere aborts the block and is re-raised to the importer.
"""

import asyncio
from typing import Any, Dict, Optional

from aiorpcx import run_in_thread

from glyphdex.lib import util
from glyphdex.lib.glyph import (
    UNKNOWN,
    DecodedGlyph,
    GlyphType,
    contract_family,
    extract_reveal_payload,
    filter_attrs,
    is_immutable,
    ref_from_payload_field,
)
from glyphdex.lib.outpoint import MAX_VOUT, Outpoint, format_outpoint, pack_ref
from glyphdex.lib.script import (
    DELEGATE_CONTRACT_TYPES,
    GLYPH_CONTRACT_TYPES,
    ContractType,
    ScriptMatch,
    classify_script,
    has_singleton_ref,
)
from glyphdex.lib.tx import Block, ChainDataError, Tx, TxOutput
from glyphdex.server.block_headers import BlockHeaderStore
from glyphdex.server.db import DB
from glyphdex.server.glyph_index import GlyphIndex
from glyphdex.server.models import BlockHeader, EmbedFile, Glyph, RemoteFileRef, TxO
from glyphdex.server.stats import StatsIndex
from glyphdex.server.txo_index import TxOIndex

SINGLETON_ASM = 'OP_PUSHINPUTREFSINGLETON'
DEFAULT_NAME = 'Unnamed Glyph'
DEFAULT_DESCRIPTION = 'Imported from blockchain'
DEFAULT_TYPE = 'object'
TICKER_MAX_LEN = 20

# Holder scripts that carry a singleton ref and so locate exactly one token
_SINGLETON_KINDS = ('nft', 'mut')


class DataProcessor:
    """Applies blocks to the index."""

    def __init__(self, db: DB, daemon, env=None, stats: Optional[StatsIndex] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.daemon = daemon
        self.headers = BlockHeaderStore(db)
        self.txos = TxOIndex(db)
        self.glyphs = GlyphIndex(db)
        self.stats = stats or StatsIndex(db, env)
        self.index_rxd = getattr(env, 'index_rxd', False)
        # Held while a worker thread writes to storage
        self.state_lock = asyncio.Lock()

    # ========================================================================
    # Blocks
    # ========================================================================

    async def process_height(self, height: int) -> Block:
        """Fetch the block at ``height`` and process it."""
        block = await self.daemon.get_block(height)
        if block.height != height:
            raise ChainDataError(f'asked for block {height}, node returned '
                                 f'{block.height}')
        await self.process_block(block)
        return block

    async def process_block(self, block: Block):
        context = {'block_height': block.height}
        self.logger.info(f'processing block {block.height} ({block.hash})',
                         extra=context)
        try:
            await self.store_block_header(block)
        except Exception:
            self.logger.exception(f'error processing block {block.height}',
                                  extra={'block_height': block.height, 'txid': None})
            raise
        await self.run_in_thread_with_lock(self.process_transactions, block)

        await self.update_stats()
        self.logger.info(f'completed block {block.height} '
                         f'({len(block.tx):,d} transactions)', extra=context)

    async def run_in_thread_with_lock(self, func, *args):
        # Run in a thread so storage writes do not block the loop.
        # Shielded so a cancelled import does not abandon a half-written block.
        async def run_in_thread_locked():
            async with self.state_lock:
                return await run_in_thread(func, *args)
        return await asyncio.shield(run_in_thread_locked())

    def process_transactions(self, block: Block):
        """Apply every transaction of ``block`` in order.  Runs in a thread."""
        for tx in block.tx:
            try:
                self.process_transaction(tx, block)
            except Exception:
                self.logger.exception(
                    f'error processing block {block.height} in transaction {tx.txid}',
                    extra={'block_height': block.height, 'txid': tx.txid})
                raise

    async def store_block_header(self, block: Block) -> Optional[BlockHeader]:
        """Store the raw block once; a known hash is left untouched."""
        if self.headers.exists(block.hash):
            self.logger.debug(f'header for block {block.height} already stored')
            return None
        raw = await self.daemon.getblock_hex(block.hash)
        try:
            buffer = bytes.fromhex(raw)
        except (TypeError, ValueError):
            raise ChainDataError(f'raw block {block.hash} is not hex') from None
        header = BlockHeader(hash=block.hash, height=block.height,
                             timestamp=util.from_unix_time(block.time),
                             buffer=buffer)
        return await self.run_in_thread_with_lock(self.headers.create, header)

    async def update_stats(self):
        # Stats are a derived view; the block stands without them
        try:
            await self.run_in_thread_with_lock(self.stats.refresh)
        except Exception as e:
            self.logger.warning(f'failed to update stats: {e}')

    # ========================================================================
    # Transactions and outputs
    # ========================================================================

    def process_transaction(self, tx: Tx, block: Block):
        if not tx.inputs:
            raise ChainDataError(f'transaction {tx.txid} has no inputs')
        self.logger.debug(f'processing transaction {tx.txid}',
                          extra={'block_height': block.height, 'txid': tx.txid})
        for output in tx.outputs:
            self.process_output(tx, output, block)
        self.mark_inputs_spent(tx)

    def process_output(self, tx: Tx, output: TxOutput, block: Block) -> Optional[TxO]:
        if self.txos.exists(tx.txid, output.n):
            self.logger.debug(f'output {tx.txid}:{output.n} already stored')
            return None

        match = classify_script(output.script_hex)
        if match is None:
            return None
        if match.contract_type == ContractType.RXD and not self.index_rxd:
            return None

        txo = self.txos.create(TxO(
            txid=tx.txid,
            vout=output.n,
            script=output.script_hex,
            value=output.value,
            date=util.from_unix_time(block.time),
            height=block.height,
            contract_type=match.contract_type,
        ))

        if match.contract_type in GLYPH_CONTRACT_TYPES and not tx.is_coinbase:
            self.process_glyph(tx, output, match, txo, block)
        return txo

    # ========================================================================
    # Glyphs
    # ========================================================================

    def decode_reveal(self, tx: Tx, output: TxOutput):
        """(ref, decoded payload, location) for a candidate output.

        The ref is built from the first input's previous txid and this
        output's index.  A ``loc`` field names an output of the transaction
        spent by the input at this output's index; the payload revealed for
        it is merged on top, one level deep.
        """
        first = tx.inputs[0]
        if first.txid is None:
            raise ChainDataError(f'transaction {tx.txid} has no previous '
                                 f'outpoint on its first input')
        ref = pack_ref(first.txid, output.n)
        _index, glyph = extract_reveal_payload(ref, tx.inputs)
        if glyph is None:
            return ref, None, None

        location = None
        loc = glyph.loc
        source = tx.inputs[output.n] if output.n < len(tx.inputs) else None
        if loc is not None and loc <= MAX_VOUT and source is not None and source.txid:
            linked_ref = pack_ref(source.txid, loc)
            linked_index, linked = extract_reveal_payload(linked_ref, tx.inputs)
            if linked_index >= 0 and linked is not None:
                glyph = glyph.merged(linked)
                location = linked_ref
        return ref, glyph, location

    def process_glyph(self, tx: Tx, output: TxOutput, match: ScriptMatch,
                      txo: TxO, block: Block) -> Optional[Glyph]:
        outpoint = format_outpoint(tx.txid, output.n)
        ref, decoded, location = self.decode_reveal(tx, output)
        if decoded is None:
            if match.kind in _SINGLETON_KINDS:
                return self.apply_transfer(match, outpoint, txo, block)
            return None

        fields = self.glyph_fields(decoded, match.contract_type, location)
        if fields is None:
            self.logger.warning(f'could not determine contract type for {outpoint}',
                                extra={'block_height': block.height, 'txid': tx.txid})
            return None
        fields.update(
            reveal_outpoint=outpoint,
            last_txo_id=txo.id,
            height=block.height,
            timestamp=util.from_unix_time(block.time),
        )

        existing = self.glyphs.find_by_ref(ref)
        if match.contract_type in DELEGATE_CONTRACT_TYPES:
            # Delegate relationships are not tracked
            self.logger.info(f'delegate output {outpoint} for {ref}',
                             extra={'block_height': block.height, 'txid': tx.txid})
            if existing is not None:
                self.logger.debug(f'glyph {ref} already exists, skipping delegate')
                return existing

        container = fields.pop('container')
        if existing is None:
            glyph, created = self.glyphs.find_or_create(Glyph(
                ref=ref,
                container=container,
                is_container=fields['token_type'] == GlyphType.CONTAINER,
                spent=0,
                fresh=1,
                **fields,
            ))
            if created:
                self.logger.debug(f'created glyph {ref}')
        else:
            fields['is_container'] = (existing.is_container
                                      or fields['token_type'] == GlyphType.CONTAINER)
            glyph = self.glyphs.update(ref, fresh=0, **fields)
            self.logger.debug(f'updated glyph {ref}')

        self.link_container(glyph, container)
        return self.glyphs.find_by_ref(ref)

    def glyph_fields(self, decoded: DecodedGlyph, contract_type: ContractType,
                     location: Optional[str]) -> Optional[Dict[str, Any]]:
        """Document fields derived from a reveal payload, or None if the
        payload names no token protocol."""
        protocols = decoded.protocols
        family = contract_family(protocols)
        if family is None:
            return None

        payload = decoded.payload
        type_tag = _text(payload.get('type')) or DEFAULT_TYPE
        ticker = payload.get('ticker')

        embed = decoded.embedded_files.get('main')
        remote = decoded.remote_files.get('main')
        return dict(
            p=list(protocols),
            token_type=_token_type(contract_type, family, type_tag),
            type=type_tag,
            name=_text(payload.get('name')) or DEFAULT_NAME,
            description=_text(payload.get('desc')) or DEFAULT_DESCRIPTION,
            author=ref_from_payload_field(payload.get('by')) or UNKNOWN,
            container=ref_from_payload_field(payload.get('in')) or UNKNOWN,
            attrs=filter_attrs(decoded.attrs),
            embed=EmbedFile(t=embed.t, b=embed.b) if embed else None,
            remote=RemoteFileRef(u=remote.u, t=remote.t, h=remote.h,
                                 hs=remote.hs) if remote else None,
            ticker=ticker[:TICKER_MAX_LEN] if isinstance(ticker, str) else None,
            immutable=is_immutable(protocols),
            location=location,
        )

    def link_container(self, glyph: Glyph, container_ref: str):
        """Make ``glyph`` a member of ``container_ref`` on both sides."""
        if container_ref in (UNKNOWN, glyph.ref):
            return
        if self.glyphs.move_to_container(glyph.ref, container_ref):
            self.logger.debug(f'added glyph {glyph.ref} to container {container_ref}')
            return
        # The container is not indexed; only the member records the claim
        if glyph.container != container_ref:
            if glyph.container != UNKNOWN:
                self.glyphs.remove_from_container(glyph.container, glyph.ref)
            self.glyphs.update(glyph.ref, container=container_ref)

    def apply_transfer(self, match: ScriptMatch, outpoint: str, txo: TxO,
                       block: Block) -> Optional[Glyph]:
        """Move a known glyph to a holder output asserting its singleton ref."""
        if not match.ref:
            return None
        ref = Outpoint.from_ref_le(match.ref).ref()
        glyph = self.glyphs.find_by_ref(ref)
        if glyph is None or glyph.spent or glyph.reveal_outpoint == outpoint:
            return None
        self.logger.debug(f'glyph {ref} moved from {glyph.reveal_outpoint} to {outpoint}')
        return self.glyphs.update(
            ref,
            reveal_outpoint=outpoint,
            last_txo_id=txo.id,
            height=block.height,
            timestamp=util.from_unix_time(block.time),
            fresh=0,
        )

    # ========================================================================
    # Spends
    # ========================================================================

    def mark_inputs_spent(self, tx: Tx):
        """Mark consumed TxOs spent and detect melted glyphs.

        A glyph located at a consumed outpoint survives only if the output
        at the same index as the input asserts a singleton ref.
        """
        for index, txin in enumerate(tx.inputs):
            outpoint = txin.outpoint
            if outpoint is None:
                continue
            if self.txos.mark_spent(outpoint.txid, outpoint.vout):
                self.logger.debug(f'marked {outpoint} spent')

            glyph = self.glyphs.find_by_reveal_outpoint(str(outpoint))
            if glyph is None or glyph.spent:
                continue
            if self.carries_singleton(tx, index):
                self.logger.debug(f'glyph {glyph.ref} transferred by {tx.txid}')
            elif self.glyphs.mark_spent(glyph.ref):
                self.logger.info(f'glyph {glyph.ref} melted in {tx.txid}',
                                 extra={'txid': tx.txid})

    @staticmethod
    def carries_singleton(tx: Tx, index: int) -> bool:
        if index >= len(tx.outputs):
            return False
        output = tx.outputs[index]
        return (SINGLETON_ASM in output.script_pub_key.asm
                or has_singleton_ref(output.script))


def _text(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _token_type(contract_type: ContractType, family: str, type_tag: str) -> GlyphType:
    if type_tag == 'user':
        return GlyphType.USER
    if type_tag == 'container':
        return GlyphType.CONTAINER
    if family == 'dat':
        return GlyphType.DAT
    if contract_type == ContractType.FT:
        return GlyphType.FT
    if contract_type == ContractType.NFT:
        return GlyphType.NFT
    return GlyphType.FT if family == 'ft' else GlyphType.NFT
