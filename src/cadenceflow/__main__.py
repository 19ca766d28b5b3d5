"""Allow ``python -m cadenceflow``."""
import sys

from .cli import main

sys.exit(main())
