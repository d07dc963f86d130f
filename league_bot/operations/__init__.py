"""
Operations Layer

This package provides the league engine's business logic. Operations modules
handle multi-step transactions, validation and state rules while the cogs
stay limited to Discord integration.

Architecture:
- Database layer: models, engine and transaction boundaries
- Operations layer: league workflows and invariants
- Command layer: Discord integration and user interface

Each operations module focuses on a specific domain:
- FixtureOperations: double round-robin fixture generation and lookups
- PlayerOperations: signup, profile and player status
- QueueOperations: attendance and the ready queue
- Matchmaker: pairing ready players and announcing matches
- MatchOperations: dual-report reconciliation and admin result commands
- OverrideOperations: admin override ownership
- AdminOperations: resets, league settings and admin roles
"""
