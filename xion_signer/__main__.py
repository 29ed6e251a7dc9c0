"""Allow running the demo with python -m xion_signer"""

import sys

from .cli import main

sys.exit(main())
