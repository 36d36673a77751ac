"""Allow ``python -m action_engine``."""

import sys

from .main import main

sys.exit(main())
