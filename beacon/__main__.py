import sys

from beacon.main import main

sys.exit(main())
