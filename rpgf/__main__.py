import sys

from rpgf.cli import main

sys.exit(main())
