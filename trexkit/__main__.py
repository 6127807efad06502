import sys

from trexkit.cli import main

sys.exit(main())
