"""External service integrations.

This module contains wrappers for the two processes ordstack drives,
bitcoind and the ord server, plus their RPC/HTTP surfaces and the ord
wallet subcommands. Keeping them separate from the workflow lets tests
substitute fakes for any of them.
"""
