import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
