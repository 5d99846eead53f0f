"""Allow ``python -m docmatch``."""

import sys

from .runner.main import main

sys.exit(main())
