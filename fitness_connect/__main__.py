import sys

from fitness_connect.cli import main

sys.exit(main())
