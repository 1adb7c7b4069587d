"""Command line entry point for glyphdex."""

import argparse
import asyncio
import json
import logging
import sys

from glyphdex import version
from glyphdex.server.env import Env


def _configure_logging(env):
    logging.basicConfig(
        level=getattr(logging, env.log_level, logging.INFO),
        format='%(levelname)s:%(name)s:%(message)s',
    )


async def _run(controller):
    controller.install_log_handler()
    try:
        await controller.run()
    finally:
        await controller.close()


async def _import(controller, reset_to):
    controller.install_log_handler()
    try:
        result = await controller.import_once(reset_to)
        print(result.message)
    finally:
        await controller.close()


def _reset(controller, args):
    state = controller.importer.reset(reset_flag=args.flag, height=args.height,
                                      block_hash=args.hash)
    controller.db.close()
    print(json.dumps(state.to_api(), indent=2))


def _state(controller):
    state = controller.state.get()
    controller.db.close()
    print(json.dumps(state.to_api(), indent=2))


def main(argv=None):
    parser = argparse.ArgumentParser(prog='glyphdex',
                                     description='Radiant Glyph token indexer')
    parser.add_argument('--version', action='version', version=version)
    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('run', help='import continuously')

    import_cmd = commands.add_parser('import', help='import one batch of blocks')
    import_cmd.add_argument('--reset-to', type=int, default=None, metavar='HEIGHT',
                            help='rewind the import position before importing')

    reset_cmd = commands.add_parser('reset', help='operator reset of the import state')
    reset_cmd.add_argument('--flag', action='store_true',
                           help='clear a stuck importing flag')
    reset_cmd.add_argument('--height', type=int, default=None,
                           help='set the last imported height')
    reset_cmd.add_argument('--hash', default=None,
                           help='block hash recorded with --height')

    commands.add_parser('state', help='print the import state')

    args = parser.parse_args(argv)
    if args.command == 'reset' and args.hash and args.height is None:
        parser.error('--hash requires --height')

    try:
        env = Env()
    except Env.Error as e:
        print(f'glyphdex: {e}', file=sys.stderr)
        return 1
    _configure_logging(env)

    # Deferred so --help works without the server stack importable
    from glyphdex.server.controller import Controller
    from glyphdex.server.importer import ImportAlreadyRunning

    controller = Controller(env)
    try:
        if args.command == 'run':
            asyncio.run(_run(controller))
        elif args.command == 'import':
            asyncio.run(_import(controller, args.reset_to))
        elif args.command == 'reset':
            _reset(controller, args)
        else:
            _state(controller)
    except ImportAlreadyRunning as e:
        print(f'glyphdex: {e}', file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        logging.getLogger('glyphdex').info('interrupted')
    return 0


if __name__ == '__main__':
    sys.exit(main())
