import sys

from localagents.cli import main

sys.exit(main())
