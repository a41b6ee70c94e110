# Make `from vaultgate.models import Lead, Scan, StorageEntry` work
from .orm import Lead, Scan, StorageEntry  # re-export
from .vault import (  # re-export
    AttributionRecord,
    BranchChoice,
    FunnelStep,
    SessionRecord,
)
