"""Core of PolyDB: contract, factory, manager, store and service."""
