"""Allow ``python -m feed_mailer``."""

import sys

from feed_mailer.cli import main

sys.exit(main())
