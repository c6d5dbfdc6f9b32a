import sys

from sheetops.cli import main

sys.exit(main())
