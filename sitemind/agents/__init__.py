"""Language-model collaborators, contract validator, router and orchestrator."""
