"""
Unit Tests Package for the Lot Allocation Engine

Covers the domain layer (slots, records, registry, ledger, aggregate),
the pydantic boundary and the messaging adapters in isolation.
"""

import sys
from pathlib import Path

# Add the src directory to the Python path for imports
src_root = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(src_root))
