"""
Core module for the light-node automation bot.

This package contains the orchestration loop, configuration, wallet
identities, proxy management and health monitoring that drive the
remote node sessions in :mod:`nodes`.

Submodules:
    config: Application settings (``NodeSettings``, ``WalletRecord``) via Pydantic.
    exceptions: Error hierarchy (configuration, registration, network, protocol).
    wallet: ``WalletIdentity`` signing keys backed by ``eth_account``.
    proxy_manager: Proxy file parsing, sticky assignment and rotation.
    orchestrator: ``Orchestrator`` cycle loop over ``SessionRecord`` entries.
    health_monitor: Periodic per-wallet health probe with recovery.
    dashboard: Rich console status report.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Corruption-safe JSON read/write helpers and cancellable sleeps.
"""
