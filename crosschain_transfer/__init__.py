"""Cross-chain USDC transfers over Circle CCTP V2 and Circle Gateway.

Start from :py:func:`crosschain_transfer.orchestrator.create_transfer_orchestrator`.
"""
