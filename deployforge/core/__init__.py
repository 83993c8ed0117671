"""Core subsystems: run ledger, stage machine, artifact store, state store and the pipeline runner."""
