import sys

from xero_accounting.cli import main

sys.exit(main())
