"""Allow ``python -m workflow_guard``."""

import sys

from .cli import main

sys.exit(main())
