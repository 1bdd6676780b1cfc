import sys

from git_lab.cli import main

sys.exit(main())
