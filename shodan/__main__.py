import sys

from shodan.cli import main

sys.exit(main())
