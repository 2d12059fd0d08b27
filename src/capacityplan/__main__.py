import sys

from capacityplan.app import main

sys.exit(main())
