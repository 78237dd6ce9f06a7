"""
Integration Tests Package for the Lot Allocation Engine

Integration tests focus on:
1. Coordinator use cases across registry, ledger and store
2. Rollback when a store write fails
3. Concurrent operations against one coordinator
4. State stores round-tripping a lot (JSON file, SQLite, mocked MongoDB)
5. The command-line entry point
"""

import sys
from pathlib import Path

# Add the src directory to the Python path for imports
src_root = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(src_root))
