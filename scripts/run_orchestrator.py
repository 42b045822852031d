"""
Run Mail Stack Orchestrator
Single command to manage everything from a checkout
Run: python scripts/run_orchestrator.py status
"""

import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from mailstack.cli import main

if __name__ == "__main__":
    main()
