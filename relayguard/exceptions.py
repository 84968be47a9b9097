"""Project-specific exception types for clearer error semantics."""

class ConfigError(ValueError):
    """Configuration validation errors."""
    pass

class CatalogError(Exception):
    """Relay directory errors."""
    pass

class CatalogUnavailable(CatalogError):
    """Directory could not be reached or answered with a non-success status."""
    pass

class CatalogMalformed(CatalogError):
    """Directory answered with a body that does not match the relay schema."""
    pass

class NoMatch(CatalogError):
    """Capability/region filtering left no relays."""
    pass

class ProbeError(Exception):
    """Aggregate latency probe failures."""
    pass

class NoReachableRelay(ProbeError):
    pass

class NoneSurvivedRefinement(ProbeError):
    pass

class SelectionError(Exception):
    """Selection policy could not produce a relay."""
    pass

class RelayNotFound(SelectionError):
    pass

class NoSelectionPolicy(SelectionError):
    pass

class TunnelError(Exception):
    """Tunnel bring-up/tear-down failures (message carries command output)."""
    pass

class StatusUnavailable(Exception):
    """Status oracle query or decode failure."""
    pass

class KeyExchangeError(Exception):
    pass

class NetworkStateError(Exception):
    pass
