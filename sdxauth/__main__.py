"""Allow ``python -m sdxauth``."""

import sys

from .cli import main


sys.exit(main())
