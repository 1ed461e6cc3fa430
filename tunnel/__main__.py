"""Allow running the helper with ``python -m tunnel``."""

import sys

from tunnel.client import main

sys.exit(main())
