"""Allow `python -m turnpipe` to launch the console runner."""

import sys

from turnpipe.interfaces.cli import main

sys.exit(main())
