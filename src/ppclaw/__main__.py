"""Allow ``python -m ppclaw``."""

import sys

from .cli import main

sys.exit(main())
