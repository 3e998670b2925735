import sys

from retail_rfm.cli import main

sys.exit(main())
