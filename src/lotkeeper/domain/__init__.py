"""Domain layer: entities, aggregate, registry and ledger"""
