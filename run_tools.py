#!/usr/bin/env python3
"""
Scan Catalog Tools Entry Point

This script provides a convenient way to run the catalog conversion from the project root.
It properly sets up the Python path and imports to work with the package structure.
"""

import sys
from pathlib import Path

# Add the src directory to Python path so we can import the scan_catalog package
project_root = Path(__file__).parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

from scan_catalog.core.catalog_tool import main

if __name__ == "__main__":
    sys.exit(main())
